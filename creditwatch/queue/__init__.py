"""
Alert queue transports.

- base: message/record types and the AlertQueueClient contract
- redis_streams: Redis Streams consumer-group transport (production)
- memory: process-local transport for development and tests
"""
