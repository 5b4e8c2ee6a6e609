"""
Shared fixtures for command and host unit tests.
"""
import pytest

from ingest_console.config.settings import RemoteHost
from ingest_console.execution import CommandBuilder, ExecutionContext


@pytest.fixture
def remote():
    return RemoteHost(host="10.0.0.5", user="deploy", key_path="/keys/id_test", connect_timeout=7)


@pytest.fixture
def local_builder(remote):
    return CommandBuilder(ExecutionContext.LOCAL, remote)


@pytest.fixture
def remote_builder(remote):
    return CommandBuilder(ExecutionContext.REMOTE, remote)
