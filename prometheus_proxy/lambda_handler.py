"""AWS Lambda entry point.

Mangum translates API Gateway HTTP API (v2) events into ASGI. Mangum
runs the lifespan around every invocation, so the Azure credential and
its token cache are rebuilt per event.
"""

from mangum import Mangum

from prometheus_proxy.main import create_app

handler = Mangum(create_app(), lifespan="auto")
