"""Git-based workspace synchronisation.

Modules:

- ``engine``      -- ``SyncEngine``: one end-to-end sync attempt.
- ``completion``  -- ``MergeCompletionHandler``: commit and push a resolved
  merge.
- ``reconciler``  -- ``classify_paths`` and ``Reconciler``: three-way
  classification and conflict detection.
- ``lock``        -- ``SyncLockManager``: filesystem lock with heartbeat.
- ``progress``    -- ``ProgressSink`` protocol and the reporter that feeds
  both the sink and the lock heartbeat.
- ``models``      -- pydantic data contracts.
- ``merger``      -- merge preview via ``merge3``.
- ``reporter``    -- human-readable and JSON formatting.

Usage example
-------------
::

    from frontier_sync.git.repository import DulwichRepository
    from frontier_sync.sync.engine import SyncEngine
    from frontier_sync.sync.models import Author, Credentials

    engine = SyncEngine(DulwichRepository("/path/to/project"))
    result = await engine.sync_changes(
        Credentials(username="oauth2", password=token),
        Author(name="Jane", email="jane@example.org"),
    )
    if result.had_conflicts:
        ...  # hand result.conflicts to the resolution UI

Submodules are imported explicitly; this package does not re-export them
because ``git.repository`` itself depends on ``sync.models``.
"""
