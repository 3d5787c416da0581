from aws_lambda_powertools.utilities.typing import LambdaContext

from imghandler.server import index as server
from imghandler.typing import ApiGatewayEvent, ResponseResult


def lambda_handler(
    event: ApiGatewayEvent,
    _: LambdaContext,
) -> ResponseResult:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  ret = server.lambda_main(event)

  # # For debugging
  # print('return:')
  # print(json.dumps(ret, default=str))

  return ret
