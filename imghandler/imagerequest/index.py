import base64
import dataclasses
import datetime
import hashlib
import hmac
import json
import re
from enum import Enum
from typing import Any, Mapping, Optional, Self
from urllib import parse

from botocore.exceptions import BotoCoreError, ClientError
from dateutil import parser
from mypy_boto3_s3.client import S3Client
from mypy_boto3_s3.type_defs import GetObjectOutputTypeDef
from pyvips import Error as VipsError  # type: ignore
from pyvips import Image  # type: ignore

from imghandler.config import Config
from imghandler.errors import (
    AccessDenied,
    BucketNotAllowed,
    DecodeError,
    HashMismatch,
    MissingHash,
    MissingKey,
    MissingPath,
    NoDefaultSize,
    NoSizesAllowed,
    NoSourceBuckets,
    NotFound,
    OriginalFetchFailed,
    RequestTypeError,
    SizeNotAllowed,
    UnsupportedOutputFormat
)
from imghandler.typing import Edits, S3Bucket, S3Key

base64_path_re = re.compile(r'(/?)([0-9a-zA-Z+/]{4})*(([0-9a-zA-Z+/]{2}==)|([0-9a-zA-Z+/]{3}=))?')
json_path_re = re.compile(r'(\{.*:)?\{.*:.*\}(\})?')
favicon_path_re = re.compile(r'(/?)favicon\.ico')
whitespace_re = re.compile(r'\s+')

# Loader name reported by libvips (without the _buffer/_source suffix) -> format name.
LOADER_FORMATS = {
    'jpegload': 'jpeg',
    'pngload': 'png',
    'webpload': 'webp',
    'gifload': 'gif',
    'tiffload': 'tiff',
    'heifload': 'heif',
    'svgload': 'svg',
}

SAVE_SUFFIXES = {
    'jpeg': '.jpg',
    'jpg': '.jpg',
    'png': '.png',
    'webp': '.webp',
    'gif': '.gif',
    'tiff': '.tif',
    'avif': '.avif',
    'heif': '.heic',
}

FALLBACK_FORMAT = 'png'


class RequestType(Enum):
  BASE64 = 0
  JSON = 1


@dataclasses.dataclass(eq=True, frozen=True)
class Size:
  width: int
  height: int

  @classmethod
  def from_filename_convention(cls, s: str) -> Optional['Size']:
    ss = s.split('x')
    if len(ss) != 2:
      return None
    try:
      return cls(int(ss[0]), int(ss[1]))
    except ValueError:
      return None

  @classmethod
  def from_image(cls, image: Image) -> 'Size':
    return cls(image.get('width'), image.get('height'))


class AcceptHeader:
  webp: bool

  def __init__(self, webp: bool):
    self.webp = webp

  @classmethod
  def from_str(cls, accept_header: str) -> Self:
    return cls('image/webp' in accept_header)


@dataclasses.dataclass(eq=True, frozen=True)
class DecodedRequest:
  key: S3Key
  edits: Edits
  bucket: Optional[S3Bucket] = None
  hash: Optional[str] = None
  output_format: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ImageObject:
  body: bytes
  content_type: Optional[str] = None
  cache_control: Optional[str] = None
  last_modified: Optional[datetime.datetime] = None
  expires: Optional[datetime.datetime] = None
  final_format: str = ''


def get_header(headers: Optional[Mapping[str, str]], name: str, default: str = '') -> str:
  if headers is None:
    return default
  name = name.lower()
  for k, v in headers.items():
    if k.lower() == name and v is not None:
      return v
  return default


def get_query_param(qs: Optional[Mapping[str, list[str]]], name: str) -> Optional[str]:
  if qs is None or name not in qs or len(qs[name]) == 0:
    return None
  return qs[name][0]


def json_dump(obj: Any) -> str:
  return json.dumps(obj, separators=(',', ':'), ensure_ascii=False)


def get_request_type(path: str) -> RequestType:
  if base64_path_re.fullmatch(path):
    return RequestType.BASE64

  if json_path_re.search(parse.unquote(path)):
    return RequestType.JSON

  if favicon_path_re.fullmatch(path):
    # Favicon requests are always answered with 404.
    raise NotFound()

  raise RequestTypeError()


def decode_request(path: Optional[str], qs: Optional[Mapping[str, list[str]]]) -> DecodedRequest:
  """Decodes a request path of either encoding into a DecodedRequest.

  A base64 path is the JSON payload encoded as one base64 segment; a JSON path is the
  URL-encoded payload itself. The hash may be embedded in the payload or given as the
  ``hash`` query parameter; the payload wins.
  """
  if path is None or path == '':
    raise MissingPath()

  request_type = get_request_type(path)

  if path.startswith('/'):
    path = path[1:]

  try:
    if request_type == RequestType.BASE64:
      payload = base64.b64decode(path).decode('utf-8')
    else:
      payload = parse.unquote(path)
    decoded = json.loads(payload)
  except ValueError as e:
    raise DecodeError() from e

  if not isinstance(decoded, dict):
    raise DecodeError()

  key = decoded.get('key')
  if not isinstance(key, str) or key == '':
    raise MissingKey()

  bucket = decoded.get('bucket')
  if bucket is not None and not isinstance(bucket, str):
    raise DecodeError()

  edits = decoded.get('edits')
  if edits is None:
    edits = {}
  elif not isinstance(edits, dict):
    raise DecodeError()

  hash = decoded.get('hash')
  if not isinstance(hash, str) or hash == '':
    hash = get_query_param(qs, 'hash')

  output_format = decoded.get('outputFormat')
  if not isinstance(output_format, str) or output_format == '':
    output_format = get_query_param(qs, 'outputFormat')

  return DecodedRequest(
      key=S3Key(key),
      edits=edits,
      bucket=None if bucket is None else S3Bucket(bucket),
      hash=hash,
      output_format=output_format)


def calc_hash(security_key: str, key: str, edits: Edits) -> str:
  source = f'{security_key}{key}{json_dump(edits)}'
  return hashlib.md5(source.encode('utf-8')).hexdigest()


def is_secure(key: str, edits: Edits, hash: Optional[str], security_key: Optional[str]) -> bool:
  if security_key is None:
    return True

  if hash is None:
    raise MissingHash()

  expected = calc_hash(security_key, key, edits)
  if not hmac.compare_digest(expected.encode('utf-8'), hash.encode('utf-8')):
    raise HashMismatch()

  return True


def split_list(value: str) -> list[str]:
  return [v for v in whitespace_re.sub('', value).split(',') if v != '']


def get_allowed_source_buckets(config: Config) -> list[S3Bucket]:
  if config.source_buckets is None:
    raise NoSourceBuckets()

  buckets = [S3Bucket(b) for b in split_list(config.source_buckets)]
  if len(buckets) == 0:
    raise NoSourceBuckets()

  return buckets


def parse_bucket(requested: Optional[str], config: Config) -> S3Bucket:
  buckets = get_allowed_source_buckets(config)

  if requested is None:
    return buckets[0]

  if requested in buckets:
    return S3Bucket(requested)

  raise BucketNotAllowed()


def sizes_restricted(config: Config) -> bool:
  return config.allowed_sizes is not None


def resize_in_request(edits: Edits) -> bool:
  resize = edits.get('resize')
  return isinstance(resize, dict) and len(resize) != 0


def get_allowed_sizes(config: Config) -> list[str]:
  if config.allowed_sizes is None:
    raise NoSizesAllowed()

  sizes = split_list(config.allowed_sizes)
  if len(sizes) == 0:
    raise NoSizesAllowed()

  return sizes


def is_zero(value: object) -> bool:
  return isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0


def format_dimension(value: object) -> str:
  # An absent dimension reads as 0, so a normalized resize still matches its allowed size.
  if value is None:
    return '0'
  if isinstance(value, float) and value.is_integer():
    return str(int(value))
  return str(value)


def is_allowed_resize(edits: Edits, config: Config) -> Edits:
  resize: dict[str, Any] = edits['resize']  # type: ignore
  requested = f"{format_dimension(resize.get('width'))}x{format_dimension(resize.get('height'))}"

  if requested in get_allowed_sizes(config):
    return edits

  raise SizeNotAllowed()


def add_size_to_request(edits: Edits, config: Config) -> Edits:
  first_size = get_allowed_sizes(config)[0]

  if not config.default_to_first_size:
    raise NoDefaultSize()

  size = Size.from_filename_convention(first_size)
  if size is None:
    raise NoDefaultSize(f'The default size "{first_size}" in ALLOWED_SIZES is malformed.')

  return {**edits, 'resize': {'width': size.width, 'height': size.height}}


def check_resize(edits: Edits, config: Config) -> Edits:
  """Enforces ALLOWED_SIZES on the edits and returns the normalized edits.

  Without ALLOWED_SIZES any resize passes. With it, a requested resize must be one of the
  allowed sizes, and a missing one is replaced by the first allowed size when
  DEFAULT_TO_FIRST_SIZE is enabled. A zero width is then dropped; only when the width is
  not zero is a zero height dropped.
  """
  if sizes_restricted(config):
    if resize_in_request(edits):
      edits = is_allowed_resize(edits, config)
    else:
      edits = add_size_to_request(edits, config)

  resize = edits.get('resize')
  if not isinstance(resize, dict):
    return edits

  resize = dict(resize)
  if is_zero(resize.get('width')):
    del resize['width']
  elif is_zero(resize.get('height')):
    del resize['height']

  return {**edits, 'resize': resize}


def get_output_format(
    accept: AcceptHeader,
    requested: Optional[str],
    config: Config,
) -> Optional[str]:
  if requested is not None:
    return requested

  if config.auto_webp and accept.webp:
    return 'webp'

  return None


def get_image_format(image: Image) -> str:
  loader: str = image.get('vips-loader')
  name = loader.removesuffix('_buffer').removesuffix('_source')
  image_format = LOADER_FORMATS.get(name, name.removesuffix('load'))

  if (image_format == 'heif' and image.get_typeof('heif-compression') != 0 and
      image.get('heif-compression') == 'av1'):
    return 'avif'

  return image_format.lower()


def is_not_found_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['404', 'NoSuchKey', 'NoSuchBucket']


def is_access_denied_client_error(exception: ClientError) -> bool:
  if 'Error' not in exception.response:
    return False
  if 'Code' not in exception.response['Error']:
    return False
  return exception.response['Error']['Code'] in ['403', 'AccessDenied']


def client_error_code(exception: ClientError) -> str:
  return exception.response.get('Error', {}).get('Code', 'Unknown')


def client_error_message(exception: ClientError) -> str:
  return exception.response.get('Error', {}).get('Message', str(exception))


def parse_expires(obj: GetObjectOutputTypeDef) -> Optional[datetime.datetime]:
  expires: Any = obj.get('Expires')
  if isinstance(expires, datetime.datetime):
    return expires

  expires_str: Any = obj.get('ExpiresString', expires)
  if not isinstance(expires_str, str):
    return None

  try:
    return parser.parse(expires_str)
  except (ValueError, OverflowError):
    return None


def get_original_image(s3: S3Client, bucket: S3Bucket, key: S3Key) -> ImageObject:
  try:
    res = s3.get_object(Bucket=bucket, Key=key)
    body = res['Body'].read()
  except ClientError as e:
    code = client_error_code(e)
    message = client_error_message(e)
    if is_not_found_client_error(e):
      raise NotFound(message, code) from e
    if is_access_denied_client_error(e):
      raise AccessDenied(message, code) from e
    raise OriginalFetchFailed(message, code) from e
  except BotoCoreError as e:
    raise OriginalFetchFailed(str(e)) from e

  return ImageObject(
      body=body,
      content_type=res.get('ContentType'),
      cache_control=res.get('CacheControl'),
      last_modified=res.get('LastModified'),
      expires=parse_expires(res))


def negotiate_final_format(original: ImageObject, output_format: Optional[str]) -> str:
  if output_format is not None and output_format.lower() not in SAVE_SUFFIXES:
    raise UnsupportedOutputFormat(f'The output format "{output_format}" is not supported.')

  # The original is decoded even with an override; a non-image object is a client error.
  try:
    image = Image.new_from_buffer(original.body, '')
  except VipsError as e:
    raise RequestTypeError() from e

  if output_format is not None:
    return output_format.lower()

  image_format = get_image_format(image)
  if image_format not in SAVE_SUFFIXES:
    return FALLBACK_FORMAT

  return image_format


@dataclasses.dataclass(frozen=True)
class ImageRequest:
  bucket: S3Bucket
  key: S3Key
  edits: Edits
  original: ImageObject
  output_format: Optional[str]

  @classmethod
  def setup(
      cls,
      s3: S3Client,
      config: Config,
      path: Optional[str],
      qs: Optional[Mapping[str, list[str]]],
      headers: Optional[Mapping[str, str]],
  ) -> 'ImageRequest':
    request = decode_request(path, qs)
    is_secure(request.key, request.edits, request.hash, config.security_key)
    bucket = parse_bucket(request.bucket, config)

    original = get_original_image(s3, bucket, request.key)

    edits = check_resize(request.edits, config)

    output_format = get_output_format(
        AcceptHeader.from_str(get_header(headers, 'accept')), request.output_format, config)

    original = dataclasses.replace(
        original, final_format=negotiate_final_format(original, output_format))

    return cls(
        bucket=bucket,
        key=request.key,
        edits=edits,
        original=original,
        output_format=output_format)
