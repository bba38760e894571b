"""
Backend package for the newswire news-aggregation service.

This package provides a FastAPI application over a keyword/news store and
the scheduled fan-out of search and feed-refresh jobs to RabbitMQ.
"""
