"""Unit tests for the command-line handlers."""

import argparse

import pytest_check as check

from kbclient.config import ClientConfig
from kbclient.main import _handle_upload


class TestUploadCommand:
    """Tests for the upload subcommand."""

    async def test_missing_file_is_reported(
        self, tmp_path, monkeypatch, capsys, client_config: ClientConfig
    ) -> None:
        """A path that does not exist exits with 1 and a readable message."""
        monkeypatch.setenv("KB_STATE_DIR", str(tmp_path / "state"))
        args = argparse.Namespace(files=[str(tmp_path / "missing.pdf")], no_wait=False, select=False)

        exit_code = await _handle_upload(args, client_config)

        check.equal(exit_code, 1)
        check.is_in("missing.pdf", capsys.readouterr().err)
