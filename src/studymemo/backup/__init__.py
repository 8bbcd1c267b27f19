"""Local backup tier.

Layout:
    ~/.studymemo/backup/
    ├── 1.2.840.113619.2.55.3.604688.md    # one file per StudyInstanceUID
    └── ohif_study_memos.json.migrated     # legacy single-blob backup, imported once
"""
