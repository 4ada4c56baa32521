"""
Stand-in for requests.Session used by the PayPal client tests.
"""
import json

import requests


class FakeResponse:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data
        self.content = b"" if data is None else json.dumps(data).encode()

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data


class FakeSession:
    """
    Routes ``(METHOD, path)`` to canned responses. A route may map to a
    list of responses (served in order) or to an exception to raise.
    """

    def __init__(self, routes=None, base_url="https://api-m.sandbox.paypal.com"):
        self.routes = dict(routes or {})
        self.base_url = base_url
        self.requests = []
        self.token_requests = 0

    def post(self, url, data=None, auth=None, headers=None, timeout=None):
        self.token_requests += 1
        self.requests.append(("POST", url[len(self.base_url):], None, timeout))
        return FakeResponse(200, {"access_token": "token-123", "expires_in": 3600})

    def request(self, method, url, json=None, headers=None, timeout=None):
        path = url[len(self.base_url):]
        self.requests.append((method, path, json, timeout))
        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(404, {"message": "Resource not found"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        return route

    def calls(self, method=None):
        return [(m, p) for m, p, _, _ in self.requests if method is None or m == method]


def connection_error():
    return requests.exceptions.ConnectionError("Connection refused")
