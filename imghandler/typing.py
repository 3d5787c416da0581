from typing import NewType, NotRequired, Optional, TypedDict

S3Bucket = NewType('S3Bucket', str)
S3Key = NewType('S3Key', str)

# Edit name -> edit parameters, in the order given by the request.
Edits = dict[str, object]


class RequestContext(TypedDict):
  requestId: NotRequired[str]
  stage: NotRequired[str]


class ApiGatewayEvent(TypedDict):
  path: NotRequired[Optional[str]]
  httpMethod: NotRequired[str]
  headers: NotRequired[Optional[dict[str, str]]]
  queryStringParameters: NotRequired[Optional[dict[str, str]]]
  multiValueQueryStringParameters: NotRequired[Optional[dict[str, list[str]]]]
  requestContext: NotRequired[RequestContext]


class ErrorBody(TypedDict):
  status: int
  code: str
  message: str


class ResponseResult(TypedDict):
  statusCode: int
  headers: dict[str, str]
  body: str
  isBase64Encoded: bool
