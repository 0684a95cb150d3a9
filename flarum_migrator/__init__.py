"""
Flarum to Discourse Migration

Moves the content of a Flarum forum into a Discourse site.

Supports:
- Users, with best-effort avatar upload
- Flarum tags imported as a two-level Discourse category taxonomy
- Discussions and posts rebuilt into topics and replies
- Transcoding of Flarum's stored XML markup into Discourse markdown
- Resumable, idempotent runs backed by a persistent ID mapping file
"""

__version__ = "0.1.0"
