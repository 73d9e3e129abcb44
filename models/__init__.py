from .ttl_cache_entry import TTLCacheEntry
from .sentiment_score_snapshot import SentimentScoreSnapshot
