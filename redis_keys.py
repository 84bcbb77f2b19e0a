REDIS_STATE_KEY = "room:{slug}:state" # room id - status, host/guest ids, ready flags, version
REDIS_USERS_KEY = "room:{slug}:users" # room id - hash user_id -> member json
REDIS_SELECTIONS_KEY = "room:{slug}:user:{user_id}:selections" # set of media ids (draft)
REDIS_MEDIA_POOL_KEY = "room:{slug}:media_pool" # list of media ids, shuffled
REDIS_SWIPES_KEY = "room:{slug}:swipes" # hash "{user_id}:{media_id}" -> LIKE|SKIP
REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room id - pub/sub channel name
REDIS_USER_ROOM_KEY = "user:{user_id}:room" # user id -> room id

# durable keys, never expire
REDIS_ROOM_RECORD_KEY = "room:{slug}:record"
REDIS_MATCH_KEY = "match:{slug}"
REDIS_MEDIA_KEY = "media:{media_id}"

# **Example `room:{id}:state` hash fields**
# - `status` = WAITING | SELECTING | SWIPING | MATCHED | CANCELLED
# - `host_id` / `guest_id` = opaque user ids
# - `host_ready` / `guest_ready` = "true" | "false"
# - `version` = integer, bumped on every status transition
# - `created_at` = ISO timestamp
# - `matched_media_id` / `matched_at` = set once on MATCHED
