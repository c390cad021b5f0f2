"""Redis Lua scripts for the distributed sliding window.

The script runs remove-older-than, count, add-one and set-expiry as a
single atomic unit, so concurrent processes sharing one counter store can
never admit more than the limit.
"""

# KEYS[1]: sorted set of admission timestamps for one rate-limit key
# ARGV[1]: now (epoch seconds)
# ARGV[2]: window size in seconds
# ARGV[3]: limit
# ARGV[4]: unique member for this admission
# ARGV[5]: key TTL in seconds
# Returns {allowed, count} where count includes this admission when allowed.
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local member = ARGV[4]
    local ttl = tonumber(ARGV[5])

    -- Evict admissions that slid out of the window
    redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)

    local count = redis.call('ZCARD', key)
    if count >= limit then
        return {0, count}
    end

    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)
    return {1, count + 1}
"""
