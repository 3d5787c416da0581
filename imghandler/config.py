import dataclasses
from typing import Mapping, Optional, Self

DEFAULT_REGION = 'us-east-1'


def get_var(environ: Mapping[str, str], name: str) -> Optional[str]:
  value = environ.get(name)
  if value is None or value == '':
    return None
  return value


def is_enabled(environ: Mapping[str, str], name: str) -> bool:
  return get_var(environ, name) == 'Yes'


@dataclasses.dataclass(eq=True, frozen=True)
class Config:
  region: str
  source_buckets: Optional[str] = None
  allowed_sizes: Optional[str] = None
  default_to_first_size: bool = False
  auto_webp: bool = False
  security_key: Optional[str] = None
  cors_enabled: bool = False
  cors_origin: Optional[str] = None

  @classmethod
  def from_environ(cls, environ: Mapping[str, str]) -> Self:
    return cls(
        region=get_var(environ, 'AWS_REGION') or DEFAULT_REGION,
        source_buckets=get_var(environ, 'SOURCE_BUCKETS'),
        allowed_sizes=get_var(environ, 'ALLOWED_SIZES'),
        default_to_first_size=is_enabled(environ, 'DEFAULT_TO_FIRST_SIZE'),
        auto_webp=is_enabled(environ, 'AUTO_WEBP'),
        security_key=get_var(environ, 'SECURITY_KEY'),
        cors_enabled=is_enabled(environ, 'CORS_ENABLED'),
        cors_origin=get_var(environ, 'CORS_ORIGIN'))
