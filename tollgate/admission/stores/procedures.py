"""Admission procedures.

Each procedure first claims the dedup record with a conditional create. A
failed claim means the content was already seen and the procedure returns
DUPLICATE without reading or writing rate-limit state. Only a successful
claim (or a call without a dedup key) reaches the limiter. The Lua sources
run inside Redis; the Python step functions implement the same arithmetic
for stores that evaluate outside Redis.

Script contract:
    KEYS[1]  rate-limit state key
    KEYS[2]  dedup key (optional)
    ARGV     now_ms ("" for server time), dedup_ttl_ms, limit, period_ms,
             state_ttl_ms, member
    reply    {code, remaining, retry_after_ms}
"""

import math

from tollgate.admission.stores.base import Procedure, ProcedureReply, ReplyCode

# Tolerance for accumulated floating point error in token counts
TOKEN_EPSILON = 1e-9

_PRELUDE = """
if #KEYS > 1 then
  if not redis.call('SET', KEYS[2], '1', 'NX', 'PX', ARGV[2]) then
    return {1, -1, 0}
  end
end
local now = tonumber(ARGV[1])
if not now then
  local t = redis.call('TIME')
  now = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)
end
local limit = tonumber(ARGV[3])
local period = tonumber(ARGV[4])
"""

WINDOW_SCRIPT = _PRELUDE + """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now - period)
local count = redis.call('ZCARD', KEYS[1])
if count >= limit then
  local oldest = redis.call('ZRANGE', KEYS[1], 0, 0, 'WITHSCORES')
  local retry = period
  if oldest[2] then
    retry = tonumber(oldest[2]) + period - now
  end
  redis.call('PEXPIRE', KEYS[1], ARGV[5])
  return {2, 0, retry}
end
redis.call('ZADD', KEYS[1], now, ARGV[6])
redis.call('PEXPIRE', KEYS[1], ARGV[5])
return {0, limit - count - 1, 0}
"""

BUCKET_SCRIPT = _PRELUDE + """
local epsilon = 1e-9
local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1])
local last = tonumber(state[2])
if tokens == nil or last == nil then
  tokens = limit
  last = now
end
if now > last then
  tokens = math.min(limit, tokens + (now - last) / period)
  last = now
end
if tokens + epsilon < 1 then
  redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(last))
  redis.call('PEXPIRE', KEYS[1], ARGV[5])
  return {2, 0, math.ceil((1 - tokens) * period)}
end
tokens = math.max(0, tokens - 1)
redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(last))
redis.call('PEXPIRE', KEYS[1], ARGV[5])
return {0, math.floor(tokens + epsilon), 0}
"""

SCRIPTS: dict[Procedure, str] = {
    Procedure.ADMIT_WINDOW: WINDOW_SCRIPT,
    Procedure.ADMIT_BUCKET: BUCKET_SCRIPT,
}

DUPLICATE_REPLY = ProcedureReply(code=ReplyCode.DUPLICATE)


def window_step(
    scores: list[float], now_ms: int, limit: int, window_ms: int
) -> tuple[ProcedureReply, list[float]]:
    """Evaluate a sliding window.

    Args:
        scores: Admission timestamps recorded so far, any order
        now_ms: Evaluation time
        limit: Admissions allowed per window
        window_ms: Window length

    Returns:
        The reply and the timestamps still inside the window. The caller
        records ``now_ms`` when the reply is ALLOW.
    """
    live = sorted(score for score in scores if score > now_ms - window_ms)
    if len(live) >= limit:
        retry_ms = int(live[0] + window_ms - now_ms)
        return ProcedureReply(ReplyCode.RATE_LIMITED, 0, retry_ms), live
    return ProcedureReply(ReplyCode.ALLOW, limit - len(live) - 1, 0), live


def bucket_step(
    tokens: float | None,
    last_ms: float | None,
    now_ms: int,
    capacity: int,
    period_ms: int,
) -> tuple[ProcedureReply, float, float]:
    """Refill a token bucket and try to take one token.

    A bucket with no state starts full. Time never runs backwards for a
    bucket: an evaluation older than the last refill adds nothing.

    Returns:
        The reply, the token count to store and the refill timestamp to store
    """
    if tokens is None or last_ms is None:
        tokens, last_ms = float(capacity), float(now_ms)
    if now_ms > last_ms:
        tokens = min(float(capacity), tokens + (now_ms - last_ms) / period_ms)
        last_ms = float(now_ms)
    if tokens + TOKEN_EPSILON < 1:
        retry_ms = math.ceil((1 - tokens) * period_ms)
        return ProcedureReply(ReplyCode.RATE_LIMITED, 0, retry_ms), tokens, last_ms
    tokens = max(0.0, tokens - 1)
    remaining = math.floor(tokens + TOKEN_EPSILON)
    return ProcedureReply(ReplyCode.ALLOW, remaining, 0), tokens, last_ms
