from starlette.requests import Request

from core import rate_limit
from core.rate_limit import RateLimitMiddleware, caller_key
from core.security import create_access_token


class _Pipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def set(self, key, value, ex=None, nx=False):
        self.ops.append(("set", key, value, nx))

    def incr(self, key):
        self.ops.append(("incr", key))

    def ttl(self, key):
        self.ops.append(("ttl", key))

    def execute(self):
        results = []
        for op in self.ops:
            if op[0] == "set":
                if op[3] and op[1] in self.store:
                    results.append(None)
                else:
                    self.store[op[1]] = op[2]
                    results.append(True)
            elif op[0] == "incr":
                self.store[op[1]] += 1
                results.append(self.store[op[1]])
            else:
                results.append(42)
        return results


class _FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self):
        return _Pipeline(self.store)


def _request(headers=None):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw, "client": ("10.0.0.7", 5000), "path": "/"})


def test_login_has_tighter_limit():
    limiter = RateLimitMiddleware(app=None, default_limit=100)
    assert limiter.limit_for("/v1/auth/login") == 10
    assert limiter.limit_for("/v1/classes") == 100


def test_window_counts_down_then_blocks(monkeypatch):
    fake = _FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: fake)
    limiter = RateLimitMiddleware(app=None, default_limit=2)

    first = limiter.hit("ip:1", "/v1/classes")
    second = limiter.hit("ip:1", "/v1/classes")
    third = limiter.hit("ip:1", "/v1/classes")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert limiter.hit("ip:2", "/v1/classes").allowed


def test_fails_open_without_redis(monkeypatch):
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: None)
    state = RateLimitMiddleware(app=None, default_limit=1).hit("ip:1", "/v1/classes")
    assert state.allowed and state.remaining == 1


def test_caller_key_prefers_token_subject():
    token = create_access_token({"sub": "abc", "role": "member"})
    assert caller_key(_request({"Authorization": f"Bearer {token}"})) == "user:abc"
    assert caller_key(_request()) == "ip:10.0.0.7"
    assert caller_key(_request({"Authorization": "Bearer garbage"})) == "ip:10.0.0.7"
