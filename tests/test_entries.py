"""Tests for File and Dir handles."""

import os

import pytest

from machinelink.models.entries import Dir, Entry, File
from machinelink.services.machine import Machine
from machinelink.utils.errors import DoesNotExist


class TestHandles:
    def test_factory(self, local_machine):
        assert isinstance(Entry.factory("/etc/hosts", local_machine), File)
        assert isinstance(Entry.factory("/etc/", local_machine), Dir)

    def test_dir_path_gets_trailing_slash(self, local_machine):
        assert Dir("/var/log", local_machine).full_path == "/var/log/"

    def test_name_and_parent(self, local_machine):
        f = File("/var/log/syslog", local_machine)
        assert f.name == "syslog"
        assert f.parent == Dir("/var/log/", local_machine)
        assert Dir("/var/log/", local_machine).name == "log"
        assert Dir("/var/log/", local_machine).parent.full_path == "/var/"

    def test_is_dir_and_is_local(self, local_machine):
        remote = Machine("deploy@web1")
        assert File("/f", local_machine).is_dir is False
        assert Dir("/d/", local_machine).is_dir is True
        assert File("/f", local_machine).is_local is True
        assert File("/f", remote).is_local is False

    def test_equality_includes_machine_and_kind(self, local_machine):
        web = Machine("deploy@web1")
        assert File("/f", local_machine) == File("/f", Machine())
        assert File("/f", local_machine) != File("/f", web)
        assert File("/d/", local_machine) != Dir("/d/", local_machine)
        assert len({File("/f", local_machine), File("/f", Machine())}) == 1

    def test_str(self, local_machine):
        assert str(File("/etc/hosts", local_machine)) == "localhost:/etc/hosts"


class TestOperations:
    """Handles call straight through to the machine's connection."""

    def test_file_write_and_contents(self, local_machine, sandbox):
        f = local_machine[sandbox + "notes.txt"]
        f.write("remember")
        assert f.exists() is True
        assert f.contents() == "remember"
        assert f.size() == 8
        assert f.stat().size == 8

    def test_file_touch(self, local_machine, sandbox):
        f = local_machine[sandbox + "marker"].touch()
        assert f.contents() == ""

    def test_contents_of_missing_file(self, local_machine, sandbox):
        with pytest.raises(DoesNotExist):
            local_machine[sandbox + "missing"].contents()

    def test_dir_entries(self, local_machine, sandbox):
        d = local_machine[sandbox + "proj/"].create()
        d["src/"].create()
        d["README"].write("# proj")
        d[".git/"].create()

        assert d.entries() == [File(sandbox + "proj/README", local_machine), Dir(sandbox + "proj/src/", local_machine)]
        assert len(d.entries(include_hidden=True)) == 3

    def test_dir_glob(self, local_machine, sandbox):
        d = local_machine[sandbox + "logs/"].create()
        d["a.log"].write("a")
        d["b.txt"].write("b")
        assert d.glob("*.log") == [File(sandbox + "logs/a.log", local_machine)]

    def test_rename_returns_new_handle(self, local_machine, sandbox):
        f = local_machine[sandbox + "draft"].write("x")
        renamed = f.rename("final")
        assert renamed == File(sandbox + "final", local_machine)
        assert not os.path.exists(sandbox + "draft")

    def test_destroy_and_purge(self, local_machine, sandbox):
        d = local_machine[sandbox + "tmp/"].create()
        d["a"].write("1")
        d.purge()
        assert d.entries() == []
        d.destroy()
        assert d.exists() is False

    def test_copy_to_and_move_to(self, local_machine, sandbox):
        src = local_machine[sandbox + "a"].write("1")
        dst = local_machine[sandbox + "out/"].create()

        copied = src.copy_to(dst)
        assert copied.contents() == "1"

        moved = src.move_to(local_machine[sandbox + "b"])
        assert moved == File(sandbox + "b", local_machine)
        assert src.exists() is False
