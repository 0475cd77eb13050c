"""
Test suite for the replication engine.

This package contains tests for all replication components:
- ChangeEvent / EventBatch models
- Subscription ordered delivery and cancellation
- Record pipeline filter, projection and transform
- SubscriptionRegistry per-parent subscription lifecycle
- ChangeDispatcher create, upsert, update and delete routing
- CollectionWatcher binding and mapping provisioning
- ReplicationEngine coordination and shutdown

These tests ensure replicated indices converge on the document store under
at-least-once delivery, and that no subscription outlives its parent.
"""
