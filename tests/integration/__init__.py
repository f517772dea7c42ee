"""
Integration Tests for NOVA

Integration tests cover end-to-end scenarios:
- Full workflow execution with real/mock E2B
- Database persistence
- API endpoints
- Celery task execution
"""
