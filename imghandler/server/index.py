import json
import os
from http import HTTPStatus
from logging import Logger
from typing import Any, Mapping, Optional

import boto3
from mypy_boto3_s3.client import S3Client

from imghandler.config import Config
from imghandler.errors import ImageHandlerError
from imghandler.imagehandler.index import ImageHandler
from imghandler.imagerequest.index import ImageRequest, get_header
from imghandler.log import init_logging
from imghandler.typing import ApiGatewayEvent, ResponseResult

logger = init_logging(__name__)


def get_response_headers(config: Config, is_error: bool = False) -> dict[str, str]:
  headers = {
      'Access-Control-Allow-Methods': 'GET',
      'Access-Control-Allow-Headers': 'Content-Type, Authorization',
      'Access-Control-Allow-Credentials': 'true',
  }

  if config.cors_enabled and config.cors_origin is not None:
    headers['Access-Control-Allow-Origin'] = config.cors_origin

  if is_error:
    headers['Content-Type'] = 'application/json'

  return headers


def error_response(config: Config, error: ImageHandlerError) -> ResponseResult:
  return {
      'statusCode': int(error.status),
      'headers': get_response_headers(config, is_error=True),
      'body': json.dumps(error.to_dict()),
      'isBase64Encoded': False,
  }


def get_query_params(event: ApiGatewayEvent) -> dict[str, list[str]]:
  multi = event.get('multiValueQueryStringParameters')
  if multi is not None:
    return multi

  single = event.get('queryStringParameters')
  if single is None:
    return {}

  return {k: [v] for k, v in single.items()}


class ImageServer:
  instances: dict[str, 'ImageServer'] = {}

  def __init__(self, log: Logger, s3: S3Client):
    self.log = log
    self.s3 = s3
    self.log_context = {'path': '', 'accept_header': ''}

  @classmethod
  def from_config(cls, log: Logger, config: Config) -> 'ImageServer':
    if config.region not in cls.instances:
      s3 = boto3.client('s3', region_name=config.region)
      cls.instances[config.region] = cls(log=log, s3=s3)

    return cls.instances[config.region]

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.log_context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.log_context,
        **dict,
    })

  def set_log_context(self, path: Optional[str], accept_header: str) -> None:
    self.log_context = {'path': str(path), 'accept_header': accept_header}

  def process(
      self,
      config: Config,
      path: Optional[str],
      qs: Optional[Mapping[str, list[str]]],
      headers: Optional[Mapping[str, str]],
  ) -> ResponseResult:
    self.set_log_context(path, get_header(headers, 'accept'))

    try:
      request = ImageRequest.setup(self.s3, config, path, qs, headers)
      result = ImageHandler(self.log, self.s3).process(request)
    except ImageHandlerError as e:
      self.log_warning('request failed', {**e.to_dict()})
      return error_response(config, e)
    except Exception as e:
      self.log_error('error during process()', {'reason': str(e)})
      return error_response(config, ImageHandlerError())

    self.log_debug(
        'responded', {
            'bucket': request.bucket,
            'key': request.key,
            'format': request.original.final_format,
            'img_size': result.img_size,
            'vips_us': result.vips_us,
        })

    return {
        'statusCode': int(HTTPStatus.OK),
        'headers': {
            **get_response_headers(config),
            **result.headers,
        },
        'body': result.b64_body,
        'isBase64Encoded': True,
    }


def handle(
    path: Optional[str],
    qs: Optional[Mapping[str, list[str]]],
    headers: Optional[Mapping[str, str]],
    environ: Optional[Mapping[str, str]] = None,
) -> ResponseResult:
  # Configuration is read on every request so that changes apply without a restart.
  config = Config.from_environ(os.environ if environ is None else environ)
  server = ImageServer.from_config(logger, config)
  return server.process(config, path, qs, headers)


def lambda_main(event: ApiGatewayEvent) -> ResponseResult:
  return handle(event.get('path'), get_query_params(event), event.get('headers'))
