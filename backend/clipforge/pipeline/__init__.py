"""
Clip selection algorithms.

Pure functions over transcripts and signals; stages in ``clipforge.stages``
handle storage and external services around them.

1. Scene segmentation: silence, semantic-shift and sentence-end boundaries,
   consolidated and walked greedily into candidate windows
2. Ranking: hook, readability, length, keyword and gap features combined
   into an impact score, then a diversity-aware selection
3. Texts: limit enforcement and normalization for generated copy
"""
