"""Journal core: entries that fade with time unless restored.

Layout:
    ~/.remember/journal/
    ├── entries/
    │   └── 3f2a….md                   # One entry: YAML frontmatter + content body
    ├── attachments/
    │   └── 3f2a…/                     # Blobs owned by that entry
    ├── .versions/                     # Timestamped backups (10 per entry)
    ├── .tombstones.json               # Deleted ids, never reused
    ├── settings.json                  # Decay unit + last reminder time
    └── achievements.json              # Streak counters + unlocked achievements
"""
