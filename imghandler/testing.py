"""Helpers shared by the test modules: synthetic images and stubbed S3 responses."""

import datetime
import io
from typing import Optional, Sequence

from botocore.response import StreamingBody
from botocore.stub import Stubber
from dateutil import tz
from pyvips import Image  # type: ignore

REGION = 'us-east-1'

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)

DUMMY_DATETIME = datetime.datetime(2000, 1, 1, tzinfo=tz.UTC)


def create_image(width: int, height: int, rgb: Sequence[int]) -> Image:
  return (Image.black(width, height) + list(rgb)).cast('uchar').copy(interpretation='srgb')


def create_two_tone_image(width: int, height: int, top: Sequence[int], bottom: Sequence[int]) -> Image:
  upper = create_image(width, height // 2, top)
  lower = create_image(width, height - height // 2, bottom)
  return upper.join(lower, 'vertical')


def to_buffer(image: Image, suffix: str = '.png') -> bytes:
  return image.write_to_buffer(suffix)


def load(body: bytes) -> Image:
  return Image.new_from_buffer(body, '')


def assert_pixel(image: Image, x: int, y: int, expected: Sequence[float]) -> None:
  actual = image.getpoint(x, y)[:len(expected)]
  assert all(abs(a - e) <= 1 for a, e in zip(actual, expected)), (actual, expected)


def add_get_object(
    stubber: Stubber,
    bucket: str,
    key: str,
    body: bytes,
    content_type: Optional[str] = 'image/png',
    cache_control: Optional[str] = None,
    last_modified: Optional[datetime.datetime] = None,
    expires: Optional[datetime.datetime] = None,
) -> None:
  res = {'Body': StreamingBody(io.BytesIO(body), len(body)), 'ContentLength': len(body)}
  if content_type is not None:
    res['ContentType'] = content_type
  if cache_control is not None:
    res['CacheControl'] = cache_control
  if last_modified is not None:
    res['LastModified'] = last_modified
  if expires is not None:
    res['Expires'] = expires

  stubber.add_response('get_object', res, {'Bucket': bucket, 'Key': key})


def add_get_object_error(
    stubber: Stubber,
    bucket: str,
    key: str,
    code: str,
    message: str,
    http_status_code: int,
) -> None:
  stubber.add_client_error(
      'get_object',
      service_error_code=code,
      service_message=message,
      http_status_code=http_status_code,
      expected_params={
          'Bucket': bucket,
          'Key': key
      })
