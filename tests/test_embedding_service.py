"""Tests for EmbeddingService class."""

import os
from unittest.mock import patch

import numpy as np
import pytest
from openai import OpenAIError

from docchat.config import config
from docchat.embeddings import EmbeddingService
from docchat.errors import VectorIndexUnavailableError
from tests.conftest import create_mock_openai_response


def test_init_with_api_key(embedding_service_factory) -> None:
    service = embedding_service_factory(model="text-embedding-3-small")
    assert service.model == "text-embedding-3-small"
    assert service.client.api_key == "test-key"


def test_init_with_env_api_key() -> None:
    with patch.dict(os.environ, {"OPENAI_API_KEY": "env-key"}):
        service = EmbeddingService(model="text-embedding-3-small")
        assert service.client.api_key == "env-key"


def test_init_default_model(embedding_service) -> None:
    assert embedding_service.model == config.EMBEDDING_MODEL


def test_batch_size_is_at_least_one(embedding_service_factory) -> None:
    assert embedding_service_factory(batch_size=0).batch_size == 1


def test_embed_single_text(openai_embeddings_api_mock, embedding_service) -> None:
    openai_embeddings_api_mock.return_value = create_mock_openai_response(
        [[0.1, 0.2, 0.3, 0.4, 0.5]]
    )

    result = embedding_service.embed("test text")

    openai_embeddings_api_mock.assert_called_once_with(
        model=config.EMBEDDING_MODEL, input=["test text"]
    )
    assert isinstance(result, np.ndarray)
    assert result.dtype == np.float32
    np.testing.assert_allclose(result, [0.1, 0.2, 0.3, 0.4, 0.5], rtol=1e-6)


def test_embed_batch_splits_requests(
    openai_embeddings_api_mock, embedding_service_factory
) -> None:
    openai_embeddings_api_mock.side_effect = [
        create_mock_openai_response([[1.0, 0.0], [0.0, 1.0]]),
        create_mock_openai_response([[0.5, 0.5]]),
    ]
    service = embedding_service_factory(batch_size=2)

    result = service.embed_batch(["text1", "text2", "text3"])

    assert openai_embeddings_api_mock.call_count == 2
    assert openai_embeddings_api_mock.call_args_list[0].kwargs["input"] == [
        "text1",
        "text2",
    ]
    assert openai_embeddings_api_mock.call_args_list[1].kwargs["input"] == ["text3"]
    assert len(result) == 3
    np.testing.assert_array_equal(result[2], np.array([0.5, 0.5], dtype=np.float32))


def test_embed_batch_empty_makes_no_request(
    openai_embeddings_api_mock, embedding_service
) -> None:
    assert embedding_service.embed_batch([]) == []
    openai_embeddings_api_mock.assert_not_called()


def test_api_error_is_wrapped(openai_embeddings_api_mock, embedding_service) -> None:
    openai_embeddings_api_mock.side_effect = OpenAIError("API Error")

    with pytest.raises(VectorIndexUnavailableError, match="API Error"):
        embedding_service.embed("test text")
