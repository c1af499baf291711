"""
Dynamic action/form engine.

- validator: strict interpreter for template definitions
- templates: project-scoped template CRUD (soft delete)
- submissions: agent submissions and submission ownership rules (hard delete)
- form_requests: agent pushes a template snapshot into the chat
- visitor_submissions: visitor answers a pushed form
- notifier: fire-and-forget real-time delivery of engine events
"""
