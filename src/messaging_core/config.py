from dataclasses import dataclass, field
from environs import Env

@dataclass
class JWTConfig:
    secret_key: str
    algorithm: str = "HS256"

@dataclass
class DBConfig:
    """ PostgreSQL """
    host: str | None = None
    port: int | None = None
    name: str | None = None
    user: str | None = None
    password: str | None = None

    """ SQLite """
    path: str | None = None

    @property
    def url(self) -> str:
        if self.host:
            return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"
        return f"sqlite+aiosqlite:///{self.path}"

@dataclass
class RedisConfig:
    host: str | None = 'localhost'
    port: int | None = 6379

@dataclass
class CacheConfig:
    backend: str = "redis"  # 'redis' or 'memory'
    ttl_seconds: int = 600
    key_prefix: str = "messaging:"

@dataclass
class EventsConfig:
    max_attempts: int = 3

@dataclass
class MessagesConfig:
    max_page_size: int | None = None

@dataclass
class Config:
    """ Config """
    jwt: JWTConfig
    db: DBConfig
    redis: RedisConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    messages: MessagesConfig = field(default_factory=MessagesConfig)

def load_config(path: str | None) -> Config:
    env = Env()
    env.read_env(path)

    return Config(
        jwt=JWTConfig(
            secret_key=env('SECRET_KEY'),
            algorithm=env('JWT_ALGORITHM', 'HS256')
        ),
        db=DBConfig(
            host=env('DB_HOST', None),
            port=env.int('DB_PORT', None),
            name=env('DB_NAME', None),
            user=env('DB_USER', None),
            password=env('DB_PASSWORD', None),
            path=env('DB_PATH', 'data/messaging.db')
        ),
        redis=RedisConfig(
            host=env('REDIS_HOST', 'localhost'),
            port=env.int('REDIS_PORT', 6379)
        ),
        cache=CacheConfig(
            backend=env('CACHE_BACKEND', 'redis'),
            ttl_seconds=env.int('CACHE_TTL_SECONDS', 600),
            key_prefix=env('CACHE_KEY_PREFIX', 'messaging:')
        ),
        events=EventsConfig(
            max_attempts=env.int('EVENT_MAX_ATTEMPTS', 3)
        ),
        messages=MessagesConfig(
            max_page_size=env.int('MESSAGES_MAX_PAGE_SIZE', None)
        )
    )
