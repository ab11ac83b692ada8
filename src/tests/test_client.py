"""
Test suite for OctopusClient session wiring
Following AAA pattern and descriptive naming
"""

import os
import pytest
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

from octopus_client.client import OctopusClient
from octopus_client.config_loader import EnvironmentVariableError
from octopus_client.outcomes import OutcomeKind
from octopus_client.retry_policy import RetryPolicy

from conftest import BASE_URL, ROOT_DOCUMENT, json_response, project


@pytest.fixture
def client(transport):
    return OctopusClient(BASE_URL, transport=transport,
                         retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False))


class TestOctopusClient:
    """Test suite for session-level behaviour"""

    def test_repositories_share_one_root_document_fetch(self, transport, client):
        """
        Test that the root document is fetched once per session, not per repository
        """
        # Arrange
        transport.add('GET', '/api', json_response(200, ROOT_DOCUMENT))
        transport.add('GET', '/api/projects/P-1', json_response(200, project("P-1")))
        transport.add('GET', '/api/environments/E-1', json_response(200, {"Id": "E-1"}))

        # Act
        project_outcome = client.projects.get("P-1")
        environment_outcome = client.environments.get("E-1")

        # Assert
        assert project_outcome.succeeded
        assert environment_outcome.succeeded
        assert len(transport.calls_to('/api')) == 1

    def test_root_fetch_is_retried_on_transient_failure(self, transport, client):
        # Arrange
        transport.add('GET', '/api', json_response(503), json_response(200, ROOT_DOCUMENT))

        # Act
        outcome = client.root()

        # Assert
        assert outcome.succeeded
        assert outcome.value.version == "2024.1.0"
        assert len(transport.calls_to('/api')) == 2

    def test_unavailable_root_fails_operations_without_resource_calls(self, transport, client):
        # Arrange
        transport.add('GET', '/api', json_response(401, {"ErrorMessage": "Unauthorized"}))

        # Act
        outcome = client.projects.get("P-1")

        # Assert
        assert outcome.kind is OutcomeKind.FATAL
        assert [call['url'] for call in transport.calls] == [BASE_URL + '/api']

    def test_repository_is_memoized_per_resource_type(self, client):
        # Assert
        assert client.repository('Projects') is client.projects
        assert client.repository('project') is client.projects
        assert client.feeds is not client.projects

    def test_repository_with_unknown_name_raises_key_error(self, client):
        with pytest.raises(KeyError):
            client.repository('Widgets')

    def test_refresh_root_fetches_again(self, transport, client):
        # Arrange
        transport.add('GET', '/api', json_response(200, ROOT_DOCUMENT))
        client.root()

        # Act
        client.refresh_root()

        # Assert
        assert len(transport.calls_to('/api')) == 2

    def test_context_manager_closes_transport(self):
        # Arrange
        transport = Mock()

        # Act
        with OctopusClient(BASE_URL, transport=transport):
            pass

        # Assert
        transport.close.assert_called_once()


class TestOctopusClientFromConfig:
    """Test suite for building a session from a configuration file"""

    CONFIG = """
    [server]
    base_url = "https://octopus.test"

    [authentication]
    type = "api_key"
    api_key_env = "OCTOPUS_TEST_API_KEY"

    [retries]
    max_attempts = 2
    base_delay = 0

    [pagination]
    strategy = "next_link"
    items_per_page = 10

    [concurrency_control]
    enforce_tokens = true
    """

    def write_config(self) -> Path:
        with tempfile.NamedTemporaryFile(mode='w', suffix='.toml', delete=False) as f:
            f.write(self.CONFIG)
            return Path(f.name)

    def test_from_config_applies_settings_and_api_key(self, transport):
        # Arrange
        config_path = self.write_config()
        transport.add('GET', '/api', json_response(200, ROOT_DOCUMENT))
        transport.add('GET', '/api/projects/P-1', json_response(200, project("P-1")))

        try:
            # Act
            with patch.dict(os.environ, {'OCTOPUS_TEST_API_KEY': 'API-TEST'}):
                client = OctopusClient.from_config(config_path, transport=transport)
            outcome = client.projects.get("P-1")

            # Assert
            assert outcome.succeeded
            assert transport.calls[-1]['headers']['X-Octopus-ApiKey'] == 'API-TEST'
            assert client.retry_policy.max_attempts == 2
            assert client.projects.pagination['items_per_page'] == 10
            assert client.projects.enforce_concurrency_tokens is True
        finally:
            os.unlink(config_path)

    def test_from_config_with_missing_credentials_raises_error(self, transport):
        # Arrange
        config_path = self.write_config()

        try:
            # Act & Assert
            with patch.dict(os.environ, {}, clear=True):
                with pytest.raises(EnvironmentVariableError):
                    OctopusClient.from_config(config_path, transport=transport)
        finally:
            os.unlink(config_path)
