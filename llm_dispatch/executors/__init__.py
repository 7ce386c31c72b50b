"""Executors bound to job kinds. Real backends are injected by the composition root."""

from llm_dispatch.executors.fake import FakeExecutor, fake_executors

__all__ = ["FakeExecutor", "fake_executors"]
