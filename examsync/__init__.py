"""
examsync: bulk import and reconciliation of exams and courses.
"""
