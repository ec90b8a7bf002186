"""Tests for copy/move strategy selection and dispatch."""

import os
from unittest.mock import patch

import pytest

from machinelink.models.entries import Dir, File
from machinelink.services.machine import Machine
from machinelink.services.transfer import TransferStrategy, classify
from machinelink.utils.errors import CrossNetworkMove, NotAnEntry, UnsupportedTransfer


@pytest.fixture
def web():
    return Machine("deploy@web1")


@pytest.fixture
def db():
    return Machine("backup@db2:2222")


class TestClassify:
    def test_same_local_machine(self, local_machine):
        assert classify(local_machine["/a"], Machine()["/b/"]) == TransferStrategy.LOCAL

    def test_same_remote_machine(self, web):
        assert classify(web["/a"], Machine("other@web1")["/b/"]) == TransferStrategy.SAME_REMOTE

    def test_upload(self, local_machine, web):
        assert classify(local_machine["/a"], web["/b/"]) == TransferStrategy.UPLOAD

    def test_download(self, local_machine, web):
        assert classify(web["/a"], local_machine["/b/"]) == TransferStrategy.DOWNLOAD

    def test_cross_remote(self, web, db):
        assert classify(web["/a"], db["/b/"]) == TransferStrategy.CROSS_REMOTE

    def test_rejects_non_entries(self, local_machine):
        with pytest.raises(NotAnEntry):
            classify("/a", local_machine["/b"])
        with pytest.raises(TypeError):
            classify(local_machine["/a"], "/b")


class TestCopy:
    """Each strategy reaches the right connection."""

    def test_local_copy_into_directory(self, local_machine, sandbox):
        os.makedirs(sandbox + "dst")
        local_machine.write(sandbox + "report.txt", "q3")

        result = local_machine.copy(local_machine[sandbox + "report.txt"], local_machine[sandbox + "dst/"])

        assert result == File(sandbox + "dst/report.txt", local_machine)
        assert result.contents() == "q3"
        assert os.path.exists(sandbox + "report.txt")

    def test_local_copy_to_new_name(self, local_machine, sandbox):
        local_machine.write(sandbox + "a", "1")
        result = local_machine.copy(local_machine[sandbox + "a"], local_machine[sandbox + "b"])
        assert result == File(sandbox + "b", local_machine)

    def test_local_copy_of_directory_keeps_kind(self, local_machine, sandbox):
        os.makedirs(sandbox + "site/css")
        os.makedirs(sandbox + "backup")

        result = local_machine.copy(local_machine[sandbox + "site/"], local_machine[sandbox + "backup/"])

        assert isinstance(result, Dir)
        assert result.full_path == sandbox + "backup/site/"
        assert os.path.isdir(sandbox + "backup/site/css")

    def test_same_remote_uses_remote_cp(self, web):
        with patch.object(web.connection, "copy") as remote_copy:
            result = web.copy(web["/srv/app/"], web["/backup/"])
        remote_copy.assert_called_once_with("/srv/app/", "/backup/")
        assert result == Dir("/backup/app/", web)

    def test_upload_through_destination(self, local_machine, web, sandbox):
        local_machine.write(sandbox + "bundle.tgz", b"tgz")
        with patch.object(web.connection, "upload") as upload:
            result = local_machine.copy(local_machine[sandbox + "bundle.tgz"], web["/srv/releases/"])
        upload.assert_called_once_with(sandbox + "bundle.tgz", "/srv/releases/")
        assert result == File("/srv/releases/bundle.tgz", web)
        assert result.machine is web

    def test_download_through_source(self, local_machine, web, sandbox):
        with patch.object(web.connection, "download") as download:
            result = web.copy(web["/var/log/app.log"], local_machine[sandbox])
        download.assert_called_once_with("/var/log/app.log", sandbox)
        assert result == File(sandbox + "app.log", local_machine)

    def test_cross_remote_runs_scp_on_source(self, web, db):
        with patch.object(web.connection, "remote_copy_to") as remote_copy_to:
            result = web.copy(web["/srv/dump.sql"], db["/restore/"])
        remote_copy_to.assert_called_once_with("/srv/dump.sql", "backup", "db2", "/restore/", 2222)
        assert result == File("/restore/dump.sql", db)

    def test_agent_endpoint_cannot_upload(self, local_machine, sandbox):
        agent_machine = Machine("web3", use_agent_protocol=True)
        local_machine.write(sandbox + "f", "1")
        with pytest.raises(UnsupportedTransfer):
            local_machine.copy(local_machine[sandbox + "f"], agent_machine["/srv/"])

    def test_agent_same_machine_copy(self):
        agent_machine = Machine("web3", use_agent_protocol=True)
        with patch.object(agent_machine.connection, "copy") as agent_copy:
            agent_machine.copy(agent_machine["/a"], agent_machine["/b/"])
        agent_copy.assert_called_once_with("/a", "/b/")


class TestMove:
    def test_local_move(self, local_machine, sandbox):
        os.makedirs(sandbox + "archive")
        local_machine.write(sandbox + "old.log", "x")

        result = local_machine.move(local_machine[sandbox + "old.log"], local_machine[sandbox + "archive/"])

        assert result == File(sandbox + "archive/old.log", local_machine)
        assert not os.path.exists(sandbox + "old.log")
        assert result.contents() == "x"

    def test_same_remote_uses_mv(self, web):
        with patch.object(web.connection, "move") as remote_move:
            result = web.move(web["/srv/a"], web["/srv/b"])
        remote_move.assert_called_once_with("/srv/a", "/srv/b")
        assert result == File("/srv/b", web)

    def test_cross_remote_refused_without_mutation(self, web, db):
        with patch.object(web.connection, "move") as src_move, \
                patch.object(web.connection, "remote_copy_to") as src_copy, \
                patch.object(web.connection, "destroy") as src_destroy, \
                patch.object(db.connection, "move") as dst_move:
            with pytest.raises(CrossNetworkMove):
                web.move(web["/srv/a"], db["/srv/"])
        for mocked in (src_move, src_copy, src_destroy, dst_move):
            mocked.assert_not_called()

    def test_local_to_remote_refused(self, local_machine, web, sandbox):
        local_machine.write(sandbox + "keep", "data")
        with pytest.raises(CrossNetworkMove):
            local_machine.move(local_machine[sandbox + "keep"], web["/srv/"])
        assert os.path.exists(sandbox + "keep")

    def test_remote_to_local_refused(self, local_machine, web, sandbox):
        with pytest.raises(CrossNetworkMove):
            web.move(web["/srv/a"], local_machine[sandbox])

    def test_rejects_non_entries(self, local_machine):
        with pytest.raises(NotAnEntry):
            local_machine.move(local_machine["/a"], "/b")
