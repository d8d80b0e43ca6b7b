# ABOUTME: Planning agent package; exposes root_agent for adk web/run.
# ABOUTME: Use AdkPlanningAgent from plan_coach.agent as the AgentClient when AGENT_BACKEND=adk.

from plan_coach.agent import AdkPlanningAgent, root_agent

__all__ = ["AdkPlanningAgent", "root_agent"]
