"""Shared test fixtures for the Gruenerator AI worker."""

import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from gruenerator_ai.config import WorkerConfig  # noqa: E402

BASE_ENV = {
    "AI_WORKER_ID": "worker-test",
    "REDIS_URL": "redis://localhost:6379/0",
    "AI_RETRY_BACKOFF_BASE": "0",
    "CLAUDE_API_KEY": "claude-key",
    "MISTRAL_API_KEY": "mistral-key",
    "IONOS_API_TOKEN": "ionos-token",
    "LITELLM_API_KEY": "litellm-key",
    "LITELLM_BASE_URL": "http://litellm.local/v1",
    "TELEKOM_API_KEY": "telekom-key",
    "BEDROCK_CLAUDE_MODEL_ID": "bedrock-model",
    "AWS_REGION": "eu-central-1",
}


@pytest.fixture
def make_config():
    """Build a WorkerConfig from BASE_ENV; ``None`` overrides remove a variable."""

    def _make(**overrides):
        env = dict(BASE_ENV)
        for key, value in overrides.items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return WorkerConfig.from_env(env)

    return _make
