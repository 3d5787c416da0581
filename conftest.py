import io
import logging
from logging import Logger
from typing import Generator

import boto3
import pytest
from botocore.stub import Stubber
from mypy_boto3_s3.client import S3Client

from imghandler.log import MyJsonFormatter
from imghandler.testing import REGION


@pytest.fixture
def logger() -> Logger:
  log = logging.getLogger('imghandler.test')
  log.setLevel(logging.DEBUG)
  for h in list(log.handlers):
    log.removeHandler(h)

  log_handler = logging.StreamHandler()
  log_handler.setFormatter(MyJsonFormatter())
  log_handler.setLevel(logging.DEBUG)
  log_handler.setStream(io.StringIO())
  log.addHandler(log_handler)
  log.propagate = False

  return log


@pytest.fixture
def s3() -> S3Client:
  return boto3.client(
      's3',
      region_name=REGION,
      aws_access_key_id='testing',
      aws_secret_access_key='testing')


@pytest.fixture
def stubber(s3: S3Client) -> Generator[Stubber, None, None]:
  with Stubber(s3) as stubber:
    yield stubber
    stubber.assert_no_pending_responses()
