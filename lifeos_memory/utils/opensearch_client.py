"""
OpenSearch client wrapper implementing the document store contract.

Each collection (memories, tasks, profiles, learning_patterns) lives in its own
index named `<index_name>_<collection>`.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .errors import DocumentStoreError
from .logging_config import get_logger
from .providers import DocumentStore

logger = get_logger(__name__)

MEMORIES = 'memories'
TASKS = 'tasks'
PROFILES = 'profiles'
LEARNING_PATTERNS = 'learning_patterns'
COLLECTIONS = (MEMORIES, TASKS, PROFILES, LEARNING_PATTERNS)

KEYWORD = {'type': 'keyword'}
DATE = {'type': 'date'}


class OpenSearchError(DocumentStoreError):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient(DocumentStore):
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client (built from config if None)
        """
        self.config = config

        if client is None:
            # Get AWS credentials and create auth
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
            # Parse endpoint to get host and port
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)

        self.client = client
        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_name(self, collection: str) -> str:
        if collection not in COLLECTIONS:
            raise OpenSearchError(f'Unknown collection: {collection}')
        return f'{self.config.index_name}_{collection}'

    def _mappings(self, collection: str) -> Dict[str, Any]:
        """Index body per collection. Owner/category/context lookups use keyword fields."""
        properties: Dict[str, Any] = {'id': KEYWORD, 'owner_id': KEYWORD, 'created_at': DATE, 'updated_at': DATE}
        settings: Dict[str, Any] = {}

        if collection == MEMORIES:
            properties.update({
                'content': {
                    'type': 'text'
                },
                'summary': {
                    'type': 'text'
                },
                'source_type': KEYWORD,
                'source_id': KEYWORD,
                'context': KEYWORD,
                'memory_type': KEYWORD,
                'importance': {
                    'type': 'integer'
                },
                'sentiment': {
                    'type': 'float'
                },
                'entities': KEYWORD,
                'keywords': KEYWORD,
                'is_active': {
                    'type': 'boolean'
                },
                'embedding': {
                    'type': 'knn_vector',
                    'dimension': self.config.dimension,
                    'method': {
                        'name': 'hnsw',
                        'space_type': 'cosinesimil',
                        'engine': 'nmslib'
                    }
                },
            })
            settings = {'index': {'knn': True, 'knn.algo_param.ef_search': 100}}
        elif collection == TASKS:
            properties.update({
                'title': {
                    'type': 'text'
                },
                'description': {
                    'type': 'text'
                },
                'context': KEYWORD,
                'participants': KEYWORD,
                'tags': KEYWORD,
                'event_type': KEYWORD,
                'status': KEYWORD,
                'linked_memory_id': KEYWORD,
                'due_date': DATE,
                'follow_up_at': DATE,
            })
        elif collection == LEARNING_PATTERNS:
            properties.update({
                'pattern_type': KEYWORD,
                'category': KEYWORD,
                'pattern': {
                    'type': 'text'
                },
                'confidence': {
                    'type': 'float'
                },
                'applicable_contexts': KEYWORD,
                'is_active': {
                    'type': 'boolean'
                },
                'contradiction_count': {
                    'type': 'integer'
                },
                'last_validated': DATE,
            })
        body: Dict[str, Any] = {'mappings': {'properties': properties}}
        if collection == PROFILES:
            # Profile sections are free-form; partial dates like '--12-29' must stay strings
            body['mappings']['date_detection'] = False
        if settings:
            body['settings'] = settings
        return body

    def create_index_if_not_exists(self, collection: str) -> str:
        """
        Create the index for a collection if it doesn't exist.

        Args:
            collection: Collection name

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(collection)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._mappings(collection))
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def ensure_indexes(self) -> None:
        for collection in COLLECTIONS:
            self.create_index_if_not_exists(collection)

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """
        Index a new document.

        Args:
            collection: Collection name
            document: Document body
            doc_id: Explicit id (generated if None)

        Returns:
            The document id
        """
        index_name = self.index_name(collection)
        doc_id = doc_id or document.get('id') or str(uuid.uuid4())
        body = {**document, 'id': doc_id}

        try:
            response = self.client.index(index=index_name, body=body, id=doc_id, refresh=True)
            if response.get('result') not in ['created', 'updated']:
                logger.warning(f'Unexpected result indexing document: {response}')
            logger.debug(f'Indexed document {doc_id} in {index_name}')
            return doc_id

        except OpenSearchException as e:
            logger.error(f'Error indexing document in {index_name}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a document by id.

        Returns:
            Document source if found, None otherwise
        """
        index_name = self.index_name(collection)

        try:
            response = self.client.get(index=index_name, id=doc_id)
            return response.get('_source') if response.get('found', True) else None
        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id} from {index_name}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')

    def patch(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """
        Partially update a document.

        Raises:
            OpenSearchError: If the document does not exist or the update fails
        """
        index_name = self.index_name(collection)

        try:
            self.client.update(index=index_name, id=doc_id, body={'doc': fields}, refresh=True)
            logger.debug(f'Patched document {doc_id} in {index_name} ({", ".join(sorted(fields))})')
        except NotFoundError:
            raise OpenSearchError(f'Document {doc_id} not found in {index_name}')
        except OpenSearchException as e:
            logger.error(f'Error patching document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to patch document: {e}')

    @staticmethod
    def _filter_clauses(filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        clauses = []
        for field_name, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                clauses.append({'terms': {field_name: list(value)}})
            else:
                clauses.append({'term': {field_name: value}})
        return clauses

    def query(self,
              collection: str,
              filters: Dict[str, Any],
              sort: Optional[List[Tuple[str, str]]] = None,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Filtered query with exact-match terms.

        Args:
            collection: Collection name
            filters: Field -> value (term) or list of values (terms)
            sort: List of (field, 'asc'|'desc')
            limit: Maximum number of documents (defaults to 1000)

        Returns:
            Matching document sources
        """
        index_name = self.index_name(collection)

        search_body: Dict[str, Any] = {'size': limit or 1000, 'query': {'bool': {'filter': self._filter_clauses(filters)}}}
        if sort:
            search_body['sort'] = [{field_name: {'order': order}} for field_name, order in sort]

        try:
            response = self.client.search(index=index_name, body=search_body)
            results = [hit['_source'] for hit in response['hits']['hits']]
            logger.debug(f'Query on {index_name} returned {len(results)} documents')
            return results

        except NotFoundError:
            logger.debug(f'Index {index_name} does not exist yet')
            return []
        except OpenSearchException as e:
            logger.error(f'Error querying {index_name}: {e}')
            raise OpenSearchError(f'Query failed: {e}')

    def vector_search(self,
                      collection: str,
                      vector: List[float],
                      filters: Dict[str, Any],
                      top_k: int = 20,
                      field_name: str = 'embedding') -> List[Dict[str, Any]]:
        """
        Perform vector similarity search.

        Args:
            collection: Collection name
            vector: Query vector for similarity search
            filters: Field -> value (term) or list of values (terms)
            top_k: Number of results to return (default 20)
            field_name: knn_vector field to search

        Returns:
            Matching document sources, most similar first
        """
        index_name = self.index_name(collection)

        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            field_name: {
                                'vector': vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': self._filter_clauses(filters)
                }
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)
            results = [hit['_source'] for hit in response['hits']['hits']]
            logger.debug(f'Vector search on {index_name} returned {len(results)} documents')
            return results

        except NotFoundError:
            logger.debug(f'Index {index_name} does not exist yet')
            return []
        except OpenSearchException as e:
            logger.error(f'Error in vector search on {index_name}: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name(MEMORIES))
            return response in [True, False]

        except OpenSearchException as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
