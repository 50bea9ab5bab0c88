from app.connections.mongo import mongo_lifespan
from app.connections.redis import redis_lifespan
