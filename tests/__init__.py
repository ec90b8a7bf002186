"""Test suite for MachineLink."""
