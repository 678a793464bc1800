REDIS_CALL_META_KEY = "call:meta:{room_id}" # room id - hash of call metadata while the room is open
REDIS_CALL_LOG_KEY = "call:log:{user_id}" # user id - list of finished call records, newest first
REDIS_NOTIFY_CHANNEL = "notifications:{user_id}" # user id - pub/sub channel read by the UI layer

# **Example `call:meta:{id}` hash fields**
# - `room_id` = `{roomId}`
# - `initiator` = user id of the caller
# - `callee` = user id invited with the first join (optional)
# - `created_at` = ISO timestamp
# - `max_participants` = integer

# **Example `call:log:{user}` entry (JSON)**
# - `room_id`, `initiator`, `participants` (list), `started_at`, `ended_at`, `end_reason`
