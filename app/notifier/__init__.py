"""Reliable notification delivery pipeline.

Takes outbound notification messages, deduplicates and batches them, delivers
them through a pluggable provider with retry/backoff, and keeps a bounded
delivery history for auditing and recovery.

Usage:
    from notifier.notifications import Message, MessageKind, NotificationPipeline

    pipeline = NotificationPipeline.from_settings(provider=my_provider)
    pipeline.start()
    outcome = pipeline.submit(
        Message(kind=MessageKind.SYSTEM_ALERT, title="Up", content="ok")
    )
"""

__version__ = "1.0.0"
