"""
OpenSearch k-NN backend for long-term memory.

Every record carries a ``namespace`` keyword field and every search and
delete is filtered on it, so one physical index serves all owners without
leaking records across them.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog
from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import OpenSearchException

from memchat.domain.errors import VectorIndexError
from memchat.domain.models.conversation import ArchiveRecord, VectorMatch
from memchat.domain.providers.base import VectorIndex

logger = structlog.get_logger(__name__)


class OpenSearchVectorIndex(VectorIndex):
    """Vector index stored in an OpenSearch knn_vector field"""

    def __init__(self, client: AsyncOpenSearch, index_name: str, dimension: int):
        self.client = client
        self.index_name = index_name
        self._dimension = dimension

    @classmethod
    def from_config(
        cls,
        host: str,
        port: int,
        index_name: str,
        dimension: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: bool = True
    ) -> "OpenSearchVectorIndex":
        """Create an index backed by a fresh AsyncOpenSearch client"""

        if '://' in host:
            host = host.split('://', 1)[1]

        http_auth = (username, password) if username and password else None
        client = AsyncOpenSearch(
            hosts=[{'host': host, 'port': port}],
            http_auth=http_auth,
            use_ssl=use_ssl,
            verify_certs=use_ssl
        )
        logger.info("Initialized OpenSearch client", host=host, port=port, index=index_name)
        return cls(client, index_name, dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    def index_body(self) -> Dict[str, Any]:
        """Index mapping with a cosine knn_vector field"""

        return {
            'settings': {
                'index': {
                    'knn': True,
                    'knn.algo_param.ef_search': 100
                }
            },
            'mappings': {
                'properties': {
                    'namespace': {'type': 'keyword'},
                    'owner_id': {'type': 'keyword'},
                    'conversation_id': {'type': 'keyword'},
                    'kind': {'type': 'keyword'},
                    'text': {'type': 'text'},
                    'timestamp': {'type': 'date'},
                    'embedding': {
                        'type': 'knn_vector',
                        'dimension': self._dimension,
                        'method': {
                            'name': 'hnsw',
                            'space_type': 'cosinesimil',
                            'engine': 'lucene'
                        }
                    }
                }
            }
        }

    async def ensure_index(self) -> bool:
        """Create the index if missing; returns True when it was created"""

        try:
            if await self.client.indices.exists(index=self.index_name):
                logger.debug("Index already exists", index=self.index_name)
                return False

            await self.client.indices.create(index=self.index_name, body=self.index_body())
            logger.info("Created index", index=self.index_name)
            return True
        except OpenSearchException as e:
            raise VectorIndexError(f"Failed to create index: {e}") from e

    async def upsert(self, namespace: str, records: Sequence[ArchiveRecord]) -> int:
        if not records:
            return 0

        actions: List[Dict[str, Any]] = []
        for record in records:
            if len(record.vector) != self._dimension:
                raise VectorIndexError(
                    f"Vector length {len(record.vector)} does not match index dimension {self._dimension}"
                )
            actions.append({'index': {'_index': self.index_name, '_id': record.id}})
            actions.append({
                **record.to_metadata(),
                'namespace': namespace,
                'embedding': list(record.vector)
            })

        try:
            response = await self.client.bulk(body=actions, refresh=True)
        except OpenSearchException as e:
            raise VectorIndexError(f"Bulk upsert failed: {e}") from e

        if response.get('errors'):
            failed = [
                item for item in response.get('items', [])
                if item.get('index', {}).get('error')
            ]
            raise VectorIndexError(f"Bulk upsert rejected {len(failed)} of {len(records)} records")

        logger.debug("Indexed records", namespace=namespace, count=len(records))
        return len(records)

    async def query(self, namespace: str, vector: Sequence[float], top_k: int) -> List[VectorMatch]:
        search_body = {
            'size': top_k,
            'query': {
                'knn': {
                    'embedding': {
                        'vector': list(vector),
                        'k': top_k,
                        'filter': {
                            'term': {'namespace': namespace}
                        }
                    }
                }
            },
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = await self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            raise VectorIndexError(f"Vector search failed: {e}") from e

        matches = []
        for hit in response['hits']['hits']:
            source = hit.get('_source', {})
            # Search filters are trusted only as far as the stored namespace agrees
            if source.get('namespace') != namespace:
                continue
            matches.append(VectorMatch(
                id=hit['_id'],
                score=self._to_cosine(hit['_score']),
                metadata={k: v for k, v in source.items() if k != 'namespace'}
            ))

        return matches

    async def delete_by_conversation(self, namespace: str, conversation_id: str) -> int:
        body = {
            'query': {
                'bool': {
                    'filter': [
                        {'term': {'namespace': namespace}},
                        {'term': {'conversation_id': conversation_id}}
                    ]
                }
            }
        }

        try:
            response = await self.client.delete_by_query(index=self.index_name, body=body, refresh=True)
        except OpenSearchException as e:
            raise VectorIndexError(f"Delete by conversation failed: {e}") from e

        return int(response.get('deleted', 0))

    async def close(self) -> None:
        await self.client.close()

    @staticmethod
    def _to_cosine(score: float) -> float:
        # Lucene cosinesimil scores are (1 + cos) / 2
        cosine = 2.0 * float(score) - 1.0
        return min(max(cosine, 0.0), 1.0)
