"""Shared fixtures for brewsync tests."""

import os
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from brewsync.config import Settings
from brewsync.data import KeyValueDataProvider
from brewsync.storage import MemoryKeyValueStore, MemoryObjectStore
from brewsync.sync import SyncOrchestrator

TEST_BUCKET = "test-sync-bucket"


@pytest.fixture
def mock_env_vars():
    """Mock environment variables for testing."""
    with patch.dict(
        os.environ,
        {
            "AWS_ACCESS_KEY_ID": "test-key",
            "AWS_SECRET_ACCESS_KEY": "test-secret",
            "AWS_REGION": "us-east-1",
            "AWS_DEFAULT_REGION": "us-east-1",
            "S3_BUCKET": TEST_BUCKET,
            "S3_PREFIX": "sync-test",
            "LOG_LEVEL": "DEBUG",
        },
    ):
        yield


@pytest.fixture
def mock_s3(mock_env_vars):
    """Mock S3 with moto."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=TEST_BUCKET)
        yield s3


@pytest.fixture
def s3_settings(mock_env_vars, tmp_path):
    """Settings pointing at the mocked bucket and a temporary data dir."""
    return Settings(_env_file=None, data_dir=tmp_path)


@pytest.fixture
def remote():
    """Object store shared by every device in a test."""
    return MemoryObjectStore()


def make_device(remote_store):
    """Build an initialized-later orchestrator with its own local store."""
    kv = MemoryKeyValueStore()
    provider = KeyValueDataProvider(kv)
    orchestrator = SyncOrchestrator(remote_store, kv, provider)
    return orchestrator, provider


@pytest.fixture
def device_a(remote):
    return make_device(remote)


@pytest.fixture
def device_b(remote):
    return make_device(remote)


@pytest.fixture
def device_factory():
    """Build extra devices, optionally against another object store."""
    return make_device
