from http import HTTPStatus
from typing import Optional

from imghandler.typing import ErrorBody


class ImageHandlerError(Exception):
  """Terminal failure of a request, rendered as a ``{status, code, message}`` body."""

  status: int = HTTPStatus.INTERNAL_SERVER_ERROR
  code: str = 'InternalError'
  message: str = 'Internal error. Please contact the system administrator.'

  def __init__(
      self,
      message: Optional[str] = None,
      code: Optional[str] = None,
      status: Optional[int] = None,
  ):
    if message is not None:
      self.message = message
    if code is not None:
      self.code = code
    if status is not None:
      self.status = status
    super().__init__(self.message)

  def to_dict(self) -> ErrorBody:
    return {'status': int(self.status), 'code': self.code, 'message': self.message}


class RequestTypeError(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'Request::RequestTypeError'
  message = (
      'The type of request you are making could not be processed. Please ensure that your '
      'original image is of a supported file type (jpg, png, tiff, webp) and that your image '
      'request is provided in the correct syntax. Refer to the documentation for additional '
      'guidance on forming image requests.')


class DecodeError(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'DecodeRequest::CannotDecodeRequest'
  message = (
      'The image request you provided could not be decoded. Please check that your request is '
      'base64 encoded properly and refer to the documentation for additional guidance.')


class MissingPath(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'DecodeRequest::CannotReadPath'
  message = (
      'The URL path you provided could not be read. Please ensure that it is properly formed '
      'according to the solution documentation.')


class MissingKey(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'DecodeRequest::MissingKey'
  message = 'The image request you provided does not name an image key.'


class NotFound(ImageHandlerError):
  status = HTTPStatus.NOT_FOUND
  code = 'Not Found'
  message = ''


class AccessDenied(ImageHandlerError):
  status = HTTPStatus.FORBIDDEN
  code = 'AccessDenied'
  message = 'Access Denied'


class OriginalFetchFailed(ImageHandlerError):
  status = HTTPStatus.BAD_GATEWAY
  code = 'OriginalFetchFailed'
  message = 'The original image could not be fetched.'


class OverlayFetchFailed(ImageHandlerError):
  status = HTTPStatus.INTERNAL_SERVER_ERROR
  code = 'OverlayFetchFailed'
  message = 'The overlay image could not be fetched.'


class BucketNotAllowed(ImageHandlerError):
  status = HTTPStatus.FORBIDDEN
  code = 'Request::CannotAccessBucket'
  message = (
      'The bucket you specified could not be accessed. Please check that the bucket is specified '
      'in your SOURCE_BUCKETS.')


class NoSourceBuckets(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'Request::NoSourceBuckets'
  message = (
      'The SOURCE_BUCKETS variable could not be read. Please check that it is not empty and '
      'contains at least one source bucket, or multiple buckets separated by commas. Spaces can '
      'be provided between commas and bucket names, these will be automatically parsed out when '
      'decoding.')


class MissingHash(ImageHandlerError):
  status = HTTPStatus.FORBIDDEN
  code = 'Request::NoSecurityHash'
  message = 'The SECURITY_KEY variable is set but no hash was provided.'


class HashMismatch(ImageHandlerError):
  status = HTTPStatus.FORBIDDEN
  code = 'Request::HashException'
  message = 'Invalid hash.'


class SizeNotAllowed(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'Resize::SizeNotAllowed'
  message = (
      'The size you specified is not allowed. Please check the sizes specified in '
      'ALLOWED_SIZES.')


class NoDefaultSize(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'Resize::NoDefault'
  message = 'No resize was specified and no default size is defined.'


class NoSizesAllowed(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'Resize::NoSizesAllowed'
  message = 'The ALLOWED_SIZES list is empty.'


class UnsupportedOperation(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'ImageEdits::UnsupportedOperation'
  message = 'The edit you requested is not supported.'


class InvalidEditParameter(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'ImageEdits::InvalidParameter'
  message = 'The parameters of an edit you requested are invalid.'


class UnsupportedOutputFormat(ImageHandlerError):
  status = HTTPStatus.BAD_REQUEST
  code = 'ImageEdits::UnsupportedOutputFormat'
  message = 'The output format you requested is not supported.'
