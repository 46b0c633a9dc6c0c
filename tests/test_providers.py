"""
Tests for the Bedrock and OpenSearch clients against mocked SDK clients.
"""

import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError
from opensearchpy.exceptions import NotFoundError, TransportError

from lifeos_memory.utils import bedrock_embed, bedrock_llm
from lifeos_memory.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from lifeos_memory.utils.bedrock_llm import BedrockLLM, BedrockLLMError, BedrockLLMTimeoutError
from lifeos_memory.utils.config import BedrockEmbedConfig, BedrockLLMConfig, OpenSearchConfig
from lifeos_memory.utils.errors import DocumentStoreError, ProviderError
from lifeos_memory.utils.opensearch_client import MEMORIES, TASKS, OpenSearchClient, OpenSearchError
from lifeos_memory.utils.providers import QUERY_MODE


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    sleeps = []
    monkeypatch.setattr(bedrock_llm.time, 'sleep', sleeps.append)
    monkeypatch.setattr(bedrock_embed.time, 'sleep', sleeps.append)
    return sleeps


def client_error(code):
    return ClientError({'Error': {'Code': code, 'Message': code}}, 'ConverseStream')


def stream_response(*chunks, total_tokens=17):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    events.append({'metadata': {'usage': {'inputTokens': 10, 'outputTokens': 7, 'totalTokens': total_tokens}, 'metrics': {'latencyMs': 5}}})
    return {'stream': events}


class TestBedrockLLM:

    @pytest.fixture
    def llm_config(self):
        return BedrockLLMConfig(region='us-east-1',
                                model_id='anthropic.claude-test',
                                max_tokens=1024,
                                temperature=0.0,
                                retry_attempts=3,
                                retry_delay=0.01)

    def test_complete_joins_stream_and_counts_tokens(self, llm_config):
        client = MagicMock()
        client.converse_stream.return_value = stream_response('{"classification": ', '"MEMORY"}')

        completion = BedrockLLM(llm_config, client=client).complete('Classify this', temperature=0.1, max_tokens=300)

        assert completion.text == '{"classification": "MEMORY"}'
        assert completion.tokens_used == 17
        kwargs = client.converse_stream.call_args.kwargs
        assert kwargs['modelId'] == 'anthropic.claude-test'
        assert kwargs['inferenceConfig'] == {'maxTokens': 300, 'temperature': 0.1, 'stopSequences': []}
        assert kwargs['messages'] == [{'role': 'user', 'content': [{'text': 'Classify this'}]}]

    def test_config_defaults_apply(self, llm_config):
        client = MagicMock()
        client.converse_stream.return_value = stream_response('ok')

        BedrockLLM(llm_config, client=client).complete('Hi')

        assert client.converse_stream.call_args.kwargs['inferenceConfig']['maxTokens'] == 1024
        assert client.converse_stream.call_args.kwargs['inferenceConfig']['temperature'] == 0.0

    def test_throttling_is_retried(self, llm_config, no_backoff):
        client = MagicMock()
        client.converse_stream.side_effect = [client_error('ThrottlingException'), stream_response('ok')]

        assert BedrockLLM(llm_config, client=client).complete('Hi').text == 'ok'
        assert client.converse_stream.call_count == 2
        assert len(no_backoff) == 1

    def test_non_retryable_error_fails_immediately(self, llm_config):
        client = MagicMock()
        client.converse_stream.side_effect = client_error('ValidationException')

        with pytest.raises(BedrockLLMError) as excinfo:
            BedrockLLM(llm_config, client=client).complete('Hi')
        assert excinfo.value.retryable is False
        assert client.converse_stream.call_count == 1

    def test_timeouts_exhaust_retries(self, llm_config, no_backoff):
        client = MagicMock()
        client.converse_stream.side_effect = ReadTimeoutError(endpoint_url='https://bedrock-runtime.us-east-1.amazonaws.com')

        with pytest.raises(BedrockLLMTimeoutError) as excinfo:
            BedrockLLM(llm_config, client=client).complete('Hi')
        assert isinstance(excinfo.value, ProviderError)
        assert excinfo.value.retryable is True
        assert client.converse_stream.call_count == 3
        assert len(no_backoff) == 2

    def test_health_check(self, llm_config):
        client = MagicMock()
        client.converse_stream.side_effect = [stream_response('OK'), client_error('AccessDeniedException')]
        llm = BedrockLLM(llm_config, client=client)

        assert llm.health_check() is True
        assert llm.health_check() is False


def embed_body(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode())}


class TestBedrockEmbed:

    def config(self, model_id='cohere.embed-english-v3', dimension=1024, batch_size=96):
        return BedrockEmbedConfig(region='us-east-1',
                                  model_id=model_id,
                                  dimension=dimension,
                                  retry_attempts=2,
                                  retry_delay=0.01,
                                  batch_size=batch_size)

    def test_cohere_batches_and_sets_input_type(self):
        client = MagicMock()
        client.invoke_model.side_effect = [
            embed_body({'embeddings': [[0.1] * 1024, [0.2] * 1024]}),
            embed_body({'embeddings': [[0.3] * 1024]}),
        ]

        result = BedrockEmbed(self.config(batch_size=2), client=client).embed(['a', '', 'b', 'c'], QUERY_MODE)

        assert [vector[0] for vector in result.vectors] == [0.1, 0.0, 0.2, 0.3]
        first_request = json.loads(client.invoke_model.call_args_list[0].kwargs['body'])
        assert first_request == {'input_type': 'search_query', 'texts': ['a', 'b']}
        assert client.invoke_model.call_count == 2

    def test_cohere_requires_1024_dimensions(self):
        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(self.config(dimension=512), client=MagicMock()).embed(['a'])

    def test_titan_embeds_one_text_per_request(self):
        client = MagicMock()
        client.invoke_model.side_effect = [
            embed_body({'embedding': [1.0, 0.0], 'inputTextTokenCount': 3}),
            embed_body({'embedding': [0.0, 1.0], 'inputTextTokenCount': 4}),
        ]

        result = BedrockEmbed(self.config('amazon.titan-embed-text-v2:0', dimension=2), client=client).embed(['first', 'second'])

        assert result.vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert result.tokens_used == 7
        assert json.loads(client.invoke_model.call_args_list[0].kwargs['body']) == {'inputText': 'first', 'dimensions': 2}

    def test_blank_texts_need_no_request(self):
        client = MagicMock()
        result = BedrockEmbed(self.config(), client=client).embed(['', '  '])

        assert result.vectors == [[0.0] * 1024, [0.0] * 1024]
        client.invoke_model.assert_not_called()

    def test_unsupported_model_and_mode(self):
        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(self.config('mistral.unknown'), client=MagicMock()).embed(['a'])
        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(self.config(), client=MagicMock()).embed(['a'], 'classification')

    def test_failures_are_retried_then_raised(self, no_backoff):
        client = MagicMock()
        client.invoke_model.side_effect = client_error('ThrottlingException')

        with pytest.raises(BedrockEmbedError) as excinfo:
            BedrockEmbed(self.config(), client=client).embed_query('a')
        assert excinfo.value.retryable is True
        assert client.invoke_model.call_count == 2
        assert len(no_backoff) == 1


class TestOpenSearchClient:

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, client):
        config = OpenSearchConfig(endpoint='https://search.example.com', port=443, region='us-east-1', index_name='lifeos', dimension=8)
        return OpenSearchClient(config, client=client)

    def test_ensure_indexes_creates_missing_indexes(self, store, client):
        client.indices.exists.side_effect = [True, False, False, False]
        client.indices.create.return_value = {'acknowledged': True}

        store.ensure_indexes()

        created = [call.kwargs['index'] for call in client.indices.create.call_args_list]
        assert created == ['lifeos_tasks', 'lifeos_profiles', 'lifeos_learning_patterns']
        profile_body = client.indices.create.call_args_list[1].kwargs['body']
        assert profile_body['mappings']['date_detection'] is False

    def test_memory_index_has_knn_vector(self, store):
        body = store._mappings(MEMORIES)
        assert body['mappings']['properties']['embedding']['dimension'] == 8
        assert body['settings']['index']['knn'] is True

    def test_insert_uses_explicit_id(self, store, client):
        client.index.return_value = {'result': 'created'}

        assert store.insert(TASKS, {'title': 'Call Bob'}, doc_id='task-1') == 'task-1'
        kwargs = client.index.call_args.kwargs
        assert kwargs['index'] == 'lifeos_tasks'
        assert kwargs['body'] == {'title': 'Call Bob', 'id': 'task-1'}
        assert kwargs['refresh'] is True

    def test_get_missing_document_returns_none(self, store, client):
        client.get.side_effect = NotFoundError(404, 'not_found', {})
        assert store.get(TASKS, 'missing') is None

    def test_patch_missing_document_raises(self, store, client):
        client.update.side_effect = NotFoundError(404, 'document_missing_exception', {})
        with pytest.raises(DocumentStoreError):
            store.patch(TASKS, 'missing', {'status': 'completed'})

    def test_query_builds_term_filters(self, store, client):
        client.search.return_value = {'hits': {'hits': [{'_source': {'id': 'task-1'}}]}}

        results = store.query(TASKS, {'owner_id': 'user-1', 'status': ['planned', 'in_progress']}, sort=[('created_at', 'asc')])

        assert results == [{'id': 'task-1'}]
        body = client.search.call_args.kwargs['body']
        assert body['size'] == 1000
        assert body['query'] == {
            'bool': {
                'filter': [{
                    'term': {
                        'owner_id': 'user-1'
                    }
                }, {
                    'terms': {
                        'status': ['planned', 'in_progress']
                    }
                }]
            }
        }
        assert body['sort'] == [{'created_at': {'order': 'asc'}}]

    def test_vector_search_uses_knn_with_filters(self, store, client):
        client.search.return_value = {'hits': {'hits': [{'_source': {'id': 'memory-1'}}]}}

        results = store.vector_search(MEMORIES, [0.1, 0.2], {'owner_id': 'user-1', 'is_active': True}, top_k=50)

        assert results == [{'id': 'memory-1'}]
        kwargs = client.search.call_args.kwargs
        assert kwargs['index'] == 'lifeos_memories'
        assert kwargs['body']['size'] == 50
        assert kwargs['body']['query']['bool']['must'] == [{'knn': {'embedding': {'vector': [0.1, 0.2], 'k': 50}}}]
        assert kwargs['body']['query']['bool']['filter'] == [{'term': {'owner_id': 'user-1'}}, {'term': {'is_active': True}}]

    def test_vector_search_on_missing_index_is_empty(self, store, client):
        client.search.side_effect = NotFoundError(404, 'index_not_found_exception', {})
        assert store.vector_search(MEMORIES, [0.1], {'owner_id': 'user-1'}) == []

    def test_query_on_missing_index_is_empty(self, store, client):
        client.search.side_effect = NotFoundError(404, 'index_not_found_exception', {})
        assert store.query(MEMORIES, {'owner_id': 'user-1'}) == []

    def test_transport_errors_are_wrapped(self, store, client):
        client.search.side_effect = TransportError(500, 'boom', {})
        with pytest.raises(OpenSearchError):
            store.query(MEMORIES, {'owner_id': 'user-1'})

    def test_unknown_collection(self, store):
        with pytest.raises(OpenSearchError):
            store.insert('notes', {})
