"""Catalog image pipeline.

Discovers product images in the catalog, queues them on a durable AMQP queue,
and compresses them in a pool of consumer workers.
"""
