"""
Configuration for the memchat service.

Thresholds live in explicit config objects that are passed into the
archive, retrieval and context components at construction time. The process
environment is read once, by ``Settings.from_env``.
"""

import os
from typing import Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class MemoryConfig(BaseModel):
    """Short-term window, archival and retrieval constants"""
    short_term_limit: int = Field(default=20, gt=0, description="Turns kept verbatim in the context window")
    archive_chunk_size: int = Field(default=4, gt=0, description="Consecutive turns per archive record")
    retrieval_top_k: int = Field(default=5, gt=0, description="Nearest records requested per query")
    relevance_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Minimum similarity kept")
    embedding_dimension: int = Field(default=768, gt=0)
    record_kind: str = "conversation_memory"
    namespace_prefix: str = "user_"
    purge_archive_on_delete: bool = False

    def namespace_for(self, owner_id: str) -> str:
        return f"{self.namespace_prefix}{owner_id}"


class ChatConfig(BaseModel):
    """Exchange-level settings"""
    max_message_chars: int = Field(default=10000, gt=0)
    fallback_response: str = "I apologize, I could not generate a response."
    default_title: str = "New Conversation"


class ProviderConfig(BaseModel):
    """Generator and embedder model selection"""
    chat_model: str = "gemini-2.5-flash"
    embedding_model: str = "models/gemini-embedding-001"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    google_api_key: Optional[str] = None


class VectorIndexConfig(BaseModel):
    """Long-term memory backend"""
    backend: Literal["memory", "opensearch"] = "memory"
    host: str = "localhost"
    port: int = 9200
    index_name: str = "memchat-memories"
    username: Optional[str] = None
    password: Optional[str] = None
    use_ssl: bool = True


class StoreConfig(BaseModel):
    """Turn / conversation store backend"""
    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "memchat.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["json", "console"] = "json"
    service_name: str = "memchat"


class Settings(BaseModel):
    """Top-level application settings"""
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8000
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    vector_index: VectorIndexConfig = Field(default_factory=VectorIndexConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    auth_tokens: Dict[str, str] = Field(default_factory=dict, description="Bearer token -> owner id")
    allowed_origins: list = Field(default_factory=lambda: ["http://localhost:5173"])

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Load settings from MEMCHAT_* environment variables with defaults"""

        if dotenv:
            load_dotenv()

        env = os.getenv

        memory = MemoryConfig(
            short_term_limit=int(env('MEMCHAT_SHORT_TERM_LIMIT', '20')),
            archive_chunk_size=int(env('MEMCHAT_ARCHIVE_CHUNK_SIZE', '4')),
            retrieval_top_k=int(env('MEMCHAT_RETRIEVAL_TOP_K', '5')),
            relevance_threshold=float(env('MEMCHAT_RELEVANCE_THRESHOLD', '0.7')),
            embedding_dimension=int(env('MEMCHAT_EMBEDDING_DIMENSION', '768')),
            purge_archive_on_delete=env('MEMCHAT_PURGE_ARCHIVE_ON_DELETE', 'false').lower() == 'true'
        )

        chat = ChatConfig(
            max_message_chars=int(env('MEMCHAT_MAX_MESSAGE_CHARS', '10000'))
        )

        providers = ProviderConfig(
            chat_model=env('MEMCHAT_CHAT_MODEL', 'gemini-2.5-flash'),
            embedding_model=env('MEMCHAT_EMBEDDING_MODEL', 'models/gemini-embedding-001'),
            temperature=float(env('MEMCHAT_TEMPERATURE', '0.7')),
            google_api_key=env('GOOGLE_API_KEY') or env('GEMINI_API_KEY')
        )

        vector_index = VectorIndexConfig(
            backend=env('MEMCHAT_VECTOR_BACKEND', 'memory'),
            host=env('OPENSEARCH_HOST', 'localhost'),
            port=int(env('OPENSEARCH_PORT', '9200')),
            index_name=env('OPENSEARCH_INDEX', 'memchat-memories'),
            username=env('OPENSEARCH_USERNAME'),
            password=env('OPENSEARCH_PASSWORD'),
            use_ssl=env('OPENSEARCH_USE_SSL', 'true').lower() == 'true'
        )

        store = StoreConfig(
            backend=env('MEMCHAT_STORE_BACKEND', 'memory'),
            sqlite_path=env('MEMCHAT_SQLITE_PATH', 'memchat.db')
        )

        logging_config = LoggingConfig(
            level=env('LOG_LEVEL', 'INFO'),
            format=env('LOG_FORMAT', 'json'),
            service_name=env('SERVICE_NAME', 'memchat')
        )

        origins = env('ALLOWED_ORIGINS')

        return cls(
            environment=env('ENVIRONMENT', 'development'),
            host=env('MEMCHAT_HOST', '0.0.0.0'),
            port=int(env('MEMCHAT_PORT', '8000')),
            memory=memory,
            chat=chat,
            providers=providers,
            vector_index=vector_index,
            store=store,
            logging=logging_config,
            auth_tokens=parse_token_map(env('MEMCHAT_AUTH_TOKENS', '')),
            allowed_origins=origins.split(',') if origins else ["http://localhost:5173"]
        )


def parse_token_map(raw: str) -> Dict[str, str]:
    """Parse "token:owner,token2:owner2" into a mapping"""

    tokens = {}
    for pair in raw.split(','):
        pair = pair.strip()
        if not pair or ':' not in pair:
            continue
        token, owner_id = pair.split(':', 1)
        if token.strip() and owner_id.strip():
            tokens[token.strip()] = owner_id.strip()
    return tokens
