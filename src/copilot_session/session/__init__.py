"""
Conversation session for a Copilot Studio agent.

- epoch: tickets that invalidate stale async continuations
- transcript: in-memory ordered transcript with echo reconciliation
- typing: transient "agent is typing" flag
- router: inbound activity classification and sign-in handoff
- controller: the session state machine
"""
