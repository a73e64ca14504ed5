REDIS_ROOM_KEY = "chatroom:meta:{slug}" # room id - room hash
REDIS_ROOMS_INDEX = "chatroom:index" # zset of room ids scored by creation order
REDIS_ROOM_MESSAGES_KEY = "chatroom:messages:{slug}" # room id - list of message JSON blobs, oldest first
REDIS_ROOM_CHANNEL = "chatroom:channel:{slug}" # room id - pub/sub channel name
REDIS_CHARACTER_KEY = "character:{character_id}" # character hash
REDIS_CHARACTERS_INDEX = "character:index" # zset of character ids scored by creation order
REDIS_SEQUENCE_KEY = "chatrelay:sequence" # counter used as the creation-order score
REDIS_MODEL_CONFIGS_KEY = "modelconfig:all" # hash of name -> model config JSON
REDIS_MODEL_DEFAULT_KEY = "modelconfig:default" # name of the default model config

# **Example `chatroom:meta:{id}` hash fields**
# - `id` = `{roomId}`
# - `name` = display name
# - `theme` = optional theme tag
# - `isActive` = true/false
# - `createdAt` = ISO timestamp
