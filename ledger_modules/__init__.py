"""
Business modules built on the ledger kernel.

Modules turn domain documents into Universal Finance Events and post them
through ``ledger_kernel.services.PostingPipeline``.  They never write
journal rows directly.
"""
