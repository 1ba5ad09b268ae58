"""Domain layer package.

This package contains the gate's pure decision logic:
- classifier: Commit message classification
- diff_parser: Unified diff parsing
- changeset: Test / non-test partitioning of a commit's changes
- verdict: Verdict engine and aggregate exit status
"""
