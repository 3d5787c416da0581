import base64
import dataclasses
import datetime
import time
from logging import Logger
from typing import Any, Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError
from dateutil import tz
from mypy_boto3_s3.client import S3Client
from pyvips import Image, Interesting  # type: ignore

from imghandler.errors import InvalidEditParameter, OverlayFetchFailed, UnsupportedOperation
from imghandler.imagerequest.index import (
    SAVE_SUFFIXES,
    ImageObject,
    ImageRequest,
    Size,
    client_error_code,
    client_error_message
)
from imghandler.typing import Edits

COMPOSITE = 'composite'

# Upper bound for an unconstrained thumbnail dimension; see vips_thumbnail().
MAX_COORD = 10000000

DEFAULT_BLUR_SIGMA = 1.0

CONTENT_TYPES = {
    'jpeg': 'image/jpeg',
    'jpg': 'image/jpeg',
    'png': 'image/png',
    'webp': 'image/webp',
    'gif': 'image/gif',
    'tiff': 'image/tiff',
    'avif': 'image/avif',
    'heif': 'image/heif',
}

EditOperation = Callable[[Image, Any], Image]


def get_dimension(params: dict[str, Any], name: str) -> Optional[int]:
  value = params.get(name)
  if value is None:
    return None
  if isinstance(value, bool) or not isinstance(value, (int, float)):
    raise InvalidEditParameter(f'"{name}" must be a number: {value!r}')
  if value <= 0 or (isinstance(value, float) and not value.is_integer()):
    raise InvalidEditParameter(f'"{name}" must be a positive integer: {value!r}')
  return int(value)


def get_number(value: Any, name: str) -> float:
  if isinstance(value, bool) or not isinstance(value, (int, float)):
    raise InvalidEditParameter(f'"{name}" must be a number: {value!r}')
  return value


def resize_image(
    image: Image,
    width: Optional[int],
    height: Optional[int],
    fit: str = 'cover',
) -> Image:
  if width is None and height is None:
    return image

  if width is None or height is None:
    return image.thumbnail_image(width or MAX_COORD, height=height or MAX_COORD)

  match fit:
    case 'cover':
      return image.thumbnail_image(width, height=height, crop=Interesting.CENTRE)
    case 'inside':
      return image.thumbnail_image(width, height=height)
    case 'fill':
      return image.thumbnail_image(width, height=height, size='force')
    case _:
      raise InvalidEditParameter(f'unsupported resize fit: {fit!r}')


def resize(image: Image, params: Any) -> Image:
  if not isinstance(params, dict):
    raise InvalidEditParameter(f'"resize" must be an object: {params!r}')
  return resize_image(
      image,
      get_dimension(params, 'width'),
      get_dimension(params, 'height'),
      params.get('fit', 'cover'))


def grayscale(image: Image, params: Any) -> Image:
  if not params:
    return image
  return image.colourspace('b-w')


def flip(image: Image, params: Any) -> Image:
  if not params:
    return image
  return image.flip('vertical')


def flop(image: Image, params: Any) -> Image:
  if not params:
    return image
  return image.flip('horizontal')


def rotate(image: Image, params: Any) -> Image:
  if params is None or params is True:
    return image.autorot()

  angle = get_number(params, 'rotate')
  if angle % 90 == 0:
    return image.rot(f'd{int(angle) % 360}')
  return image.rotate(angle)


def negate(image: Image, params: Any) -> Image:
  if not params:
    return image
  return image.invert()


def blur(image: Image, params: Any) -> Image:
  if params is False or params is None:
    return image
  sigma = DEFAULT_BLUR_SIGMA if params is True else get_number(params, 'blur')
  if sigma <= 0:
    raise InvalidEditParameter(f'"blur" must be positive: {params!r}')
  return image.gaussblur(sigma)


def sharpen(image: Image, params: Any) -> Image:
  if params is False or params is None:
    return image
  if params is True:
    return image.sharpen()
  return image.sharpen(sigma=get_number(params, 'sharpen'))


def flatten(image: Image, params: Any) -> Image:
  if not params or not image.hasalpha():
    return image
  if isinstance(params, dict) and isinstance(params.get('background'), dict):
    bg = params['background']
    return image.flatten(
        background=[get_number(bg.get(c, 0), f'background.{c}') for c in ('r', 'g', 'b')])
  return image.flatten()


def extract(image: Image, params: Any) -> Image:
  if not isinstance(params, dict):
    raise InvalidEditParameter(f'"extract" must be an object: {params!r}')
  left = int(get_number(params.get('left', 0), 'left'))
  top = int(get_number(params.get('top', 0), 'top'))
  width = get_dimension(params, 'width')
  height = get_dimension(params, 'height')
  if width is None or height is None:
    raise InvalidEditParameter('"extract" requires "width" and "height"')
  return image.extract_area(left, top, width, height)


EDIT_OPERATIONS: dict[str, EditOperation] = {
    'resize': resize,
    'grayscale': grayscale,
    'greyscale': grayscale,
    'flip': flip,
    'flop': flop,
    'rotate': rotate,
    'negate': negate,
    'blur': blur,
    'sharpen': sharpen,
    'flatten': flatten,
    'extract': extract,
}


def format_http_date(d: datetime.datetime) -> str:
  if d.tzinfo is None:
    d = d.replace(tzinfo=tz.tzutc())
  return d.astimezone(tz.tzutc()).strftime('%a, %d %b %Y %H:%M:%S GMT')


def forward_http_headers(original: ImageObject) -> dict[str, str]:
  headers: dict[str, str] = {}

  content_type = CONTENT_TYPES.get(original.final_format, original.content_type)
  if content_type is not None:
    headers['Content-Type'] = content_type

  if original.cache_control is not None:
    headers['Cache-Control'] = original.cache_control

  if original.last_modified is not None:
    headers['Last-Modified'] = format_http_date(original.last_modified)

  if original.expires is not None:
    headers['Expires'] = format_http_date(original.expires)

  return headers


@dataclasses.dataclass(frozen=True)
class ProcessedImage:
  b64_body: str
  headers: dict[str, str]
  vips_us: int
  img_size: int


class ImageHandler:

  def __init__(self, log: Logger, s3: S3Client):
    self.log = log
    self.s3 = s3

  def get_overlay_image(self, bucket: str, key: str) -> bytes:
    try:
      res = self.s3.get_object(Bucket=bucket, Key=key)
      return res['Body'].read()
    except ClientError as e:
      raise OverlayFetchFailed(client_error_message(e), client_error_code(e)) from e
    except BotoCoreError as e:
      raise OverlayFetchFailed(str(e)) from e

  def create_overlay(self, image: Image, edits: Edits, params: Any) -> Image:
    if (not isinstance(params, dict) or not isinstance(params.get('bucket'), str) or
        not isinstance(params.get('key'), str)):
      raise InvalidEditParameter('"composite" requires "bucket" and "key"')

    overlay = Image.new_from_buffer(self.get_overlay_image(params['bucket'], params['key']), '')
    self.log.debug({
        'message': 'overlay fetched',
        'bucket': params['bucket'],
        'key': params['key'],
    })

    size = Size.from_image(image)
    width: Optional[int] = size.width
    height: Optional[int] = size.height

    # An explicit resize decides the overlay size even before it has been applied.
    if 'resize' in edits:
      resize_param = edits['resize']
      if isinstance(resize_param, dict):
        width = get_dimension(resize_param, 'width')
        height = get_dimension(resize_param, 'height')
      else:
        width = height = None

    return resize_image(overlay, width, height)

  def apply_edits(self, body: bytes, edits: Edits) -> Image:
    """Decodes the image and applies the edits in order.

    EXIF orientation is normalized first. The composite layer is prepared when its edit is
    reached and laid over the top-left corner once every other edit has been applied.
    """
    image: Image = Image.new_from_buffer(body, '').autorot()
    overlay: Optional[Image] = None

    for name, params in edits.items():
      if name == COMPOSITE:
        overlay = self.create_overlay(image, edits, params)
        continue

      operation = EDIT_OPERATIONS.get(name)
      if operation is None:
        raise UnsupportedOperation(f'The edit "{name}" is not supported.')
      image = operation(image, params)

    if overlay is not None:
      has_alpha = image.hasalpha()
      image = image.composite2(overlay, 'over', x=0, y=0)
      # composite2 always adds an alpha band; an opaque primary stays opaque.
      if not has_alpha:
        image = image.extract_band(0, n=image.bands - 1)

    return image

  def process(self, request: ImageRequest) -> ProcessedImage:
    start_ns = time.time_ns()

    image = self.apply_edits(request.original.body, request.edits)
    body: bytes = image.write_to_buffer(SAVE_SUFFIXES[request.original.final_format])

    vips_us = (time.time_ns() - start_ns) // 1000

    return ProcessedImage(
        b64_body=base64.b64encode(body).decode(),
        headers=forward_http_headers(request.original),
        vips_us=vips_us,
        img_size=len(body))
