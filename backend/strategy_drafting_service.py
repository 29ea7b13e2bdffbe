"""
Strategy Drafting Service

Asks a strategy generator for candidate strategies for a priority and
stores them as draft strategies.

Generators:
- LLMStrategyGenerator: OpenAI chat completion in JSON mode
- TemplateStrategyGenerator: deterministic playbook drafts, used when no
  API key is configured

The generator call runs on its own worker thread bounded by a timeout. The
timeout is also handed to the generator so a network-bound generator can
give up on its own instead of outliving the caller.
"""

import os
import json
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Dict, Any, List, Optional

from sqlalchemy.orm import Session

from models import DraftStrategy
from planning_errors import (
    PlanningError, PlanningValidationError, GenerationFailedError,
    GenerationTimeoutError, MalformedGenerationError
)
from fiscal_planning_service import FiscalPlanningService, normalize_strategy
from llm_client import StrategyLLMClient, LLMConfig

logger = logging.getLogger(__name__)

MIN_STRATEGIES = 1
MAX_STRATEGIES = 5
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("STRATEGY_GENERATION_TIMEOUT_SECONDS", "60"))


# ═══════════════════════════════════════════════════════════════════════════════
# GENERATORS
# ═══════════════════════════════════════════════════════════════════════════════

class StrategyGenerator:
    """Produces raw strategy payloads. Output is normalized by the service."""
    name = "base"

    @property
    def model_version(self) -> Optional[str]:
        return None

    def generate(self, context: Dict[str, str], count: int, timeout: Optional[float] = None) -> Any:
        raise NotImplementedError


class LLMStrategyGenerator(StrategyGenerator):
    name = "openai"

    def __init__(self, client: Optional[StrategyLLMClient] = None):
        self.client = client or StrategyLLMClient(LLMConfig())

    @property
    def model_version(self) -> Optional[str]:
        return self.client.config.model

    def build_prompt(self, context: Dict[str, str], count: int) -> str:
        return f"""You are helping develop OGSM (Objectives, Goals, Strategies, Measures) strategies.

PRIORITY / OBJECTIVE:
{context.get('objective', 'Not specified')}

CONTEXT:
- Industry: {context.get('industry', 'Not specified')}
- Company Size: {context.get('company_size', 'Not specified')}
- Current Situation: {context.get('current_situation', 'Not provided')}
- Constraints: {context.get('constraints', 'None specified')}
- Available Resources: {context.get('resources', 'Not specified')}
- Desired Timeframe: {context.get('timeframe', 'Not specified')}

Additional context:
{json.dumps(context, indent=2, default=str)}

Generate {count} actionable strategies. For each strategy provide:
- title: clear, actionable strategy name
- description: 2-3 sentence overview
- rationale: why this strategy will work
- implementation_steps: array of 4-6 concrete steps
- success_probability: decimal 0-1
- estimated_cost: "low", "medium", or "high"
- timeframe: realistic timeframe (e.g. "3-6 months")
- risks: array of 2-3 key risks
- required_resources: array of 3-5 resources
- success_metrics: array of 3-5 KPIs to track
- supporting_evidence: array of references to similar successful cases

Return ONLY a JSON object with a "strategies" array."""

    def generate(self, context: Dict[str, str], count: int, timeout: Optional[float] = None) -> Any:
        payload = self.client.complete_json(self.build_prompt(context, count), timeout=timeout)
        logger.info(f"LLM strategy generation used {self.client.get_usage_stats()['total_tokens']} tokens so far")
        if isinstance(payload, dict) and "strategies" in payload:
            return payload["strategies"]
        return payload


class TemplateStrategyGenerator(StrategyGenerator):
    """Deterministic drafts from a fixed playbook, tailored by the priority title."""
    name = "template"

    PLAYBOOK = [
        {
            "title": "Focused growth program for {objective}",
            "description": "Concentrate investment on the segments with the strongest pull toward {objective}.",
            "rationale": "Focused programs outperform broad initiatives when resources are limited.",
            "implementation_steps": [
                "Segment current performance data",
                "Select the two highest-potential segments",
                "Assign an owner and budget per segment",
                "Review results monthly",
            ],
            "success_probability": 0.7,
            "estimated_cost": "medium",
            "timeframe": "6-12 months",
            "risks": ["Segment selection based on incomplete data", "Budget spread too thin"],
            "required_resources": ["Program owner", "Analytics support", "Dedicated budget"],
            "success_metrics": ["Segment revenue growth", "Program ROI", "Segment retention rate"],
            "supporting_evidence": ["Segment-focused growth playbooks"],
        },
        {
            "title": "Operational excellence initiative for {objective}",
            "description": "Remove process bottlenecks that slow progress on {objective}.",
            "rationale": "Efficiency gains compound and free capacity for strategic work.",
            "implementation_steps": [
                "Map the core delivery process",
                "Identify the top three bottlenecks",
                "Run improvement sprints",
                "Standardize the improved process",
            ],
            "success_probability": 0.65,
            "estimated_cost": "low",
            "timeframe": "3-6 months",
            "risks": ["Change fatigue", "Gains not sustained"],
            "required_resources": ["Process lead", "Cross-functional team"],
            "success_metrics": ["Cycle time", "Cost per unit", "Error rate"],
            "supporting_evidence": ["Lean process improvement case studies"],
        },
        {
            "title": "Customer partnership strategy for {objective}",
            "description": "Build deeper relationships with key customers to advance {objective}.",
            "rationale": "Retained customers are cheaper to grow than new ones are to acquire.",
            "implementation_steps": [
                "Identify top accounts",
                "Set up quarterly business reviews",
                "Co-develop a joint success plan",
                "Track account health",
            ],
            "success_probability": 0.6,
            "estimated_cost": "medium",
            "timeframe": "6-12 months",
            "risks": ["Over-reliance on few accounts", "Inconsistent follow-through"],
            "required_resources": ["Account managers", "CRM tooling"],
            "success_metrics": ["Net revenue retention", "Customer satisfaction score", "Account expansion rate"],
            "supporting_evidence": ["Key account management programs"],
        },
        {
            "title": "Capability building for {objective}",
            "description": "Develop the skills and systems the organization needs to deliver {objective}.",
            "rationale": "Sustained results depend on capabilities, not one-off projects.",
            "implementation_steps": [
                "Assess current capability gaps",
                "Prioritize training and hiring",
                "Launch development tracks",
                "Measure capability uptake",
            ],
            "success_probability": 0.55,
            "estimated_cost": "high",
            "timeframe": "12-18 months",
            "risks": ["Attrition of trained staff", "Slow time to impact"],
            "required_resources": ["HR partner", "Training budget", "Mentors"],
            "success_metrics": ["Skills coverage", "Employee engagement", "Internal promotion rate"],
            "supporting_evidence": ["Capability maturity assessments"],
        },
        {
            "title": "Data-driven performance management for {objective}",
            "description": "Introduce a measurement cadence that keeps {objective} visible and on track.",
            "rationale": "What gets measured and reviewed regularly gets managed.",
            "implementation_steps": [
                "Define leading and lagging indicators",
                "Build a shared dashboard",
                "Hold monthly performance reviews",
                "Adjust initiatives based on results",
            ],
            "success_probability": 0.75,
            "estimated_cost": "low",
            "timeframe": "3-6 months",
            "risks": ["Metric overload", "Data quality issues"],
            "required_resources": ["Analyst", "BI tooling"],
            "success_metrics": ["Dashboard adoption", "Forecast accuracy", "Review completion rate"],
            "supporting_evidence": ["OGSM measurement cadences"],
        },
    ]

    def generate(self, context: Dict[str, str], count: int, timeout: Optional[float] = None) -> Any:
        objective = context.get("objective") or "the priority"
        drafts = []
        for template in self.PLAYBOOK[:count]:
            draft = dict(template)
            draft["title"] = template["title"].format(objective=objective)
            draft["description"] = template["description"].format(objective=objective)
            drafts.append(draft)
        return drafts


def get_strategy_generator() -> StrategyGenerator:
    """Dependency: LLM generator when an API key is configured, else templates."""
    client = StrategyLLMClient(LLMConfig())
    if client.available:
        return LLMStrategyGenerator(client)
    logger.info("No OpenAI API key configured - using template strategy generator")
    return TemplateStrategyGenerator()


# ═══════════════════════════════════════════════════════════════════════════════
# SERVICE
# ═══════════════════════════════════════════════════════════════════════════════

class StrategyDraftingService:
    """Generates and persists draft strategies for a priority."""

    def __init__(self, db: Session, generator: Optional[StrategyGenerator] = None):
        self.db = db
        self.generator = generator or get_strategy_generator()
        self.plans = FiscalPlanningService(db)

    def _build_context(self, priority, context: Optional[Dict[str, Any]]) -> Dict[str, str]:
        if context is not None and not isinstance(context, dict):
            raise PlanningValidationError("context must be an object of strings")

        merged = {"objective": priority.title}
        if priority.description:
            merged["priority_description"] = priority.description
        for key, value in (context or {}).items():
            if value is not None:
                merged[str(key)] = str(value)
        return merged

    def _call_generator(self, context: Dict[str, str], count: int, timeout: float) -> Any:
        # One pool per call: an abandoned call must not occupy a worker that a
        # later request needs.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="strategy-gen")
        future = pool.submit(self.generator.generate, context, count, timeout)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(f"Strategy generator {self.generator.name} exceeded {timeout}s, abandoning call")
            raise GenerationTimeoutError(
                f"Strategy generation did not finish within {timeout}s",
                timeout_seconds=timeout
            )
        except PlanningError:
            raise
        except Exception as e:
            logger.warning(f"Strategy generator {self.generator.name} failed: {e}")
            raise GenerationFailedError(f"Strategy generation failed: {e}") from e
        finally:
            pool.shutdown(wait=False)

    def normalize_output(self, raw: Any, count: int) -> List[Dict[str, Any]]:
        """Validate generator output and coerce each item to the draft shape."""
        if not isinstance(raw, list):
            raise MalformedGenerationError(
                f"Strategy generator returned {type(raw).__name__}, expected a list of strategies"
            )
        kept = raw[:count]
        if any(not isinstance(item, dict) for item in kept):
            raise MalformedGenerationError("Every generated strategy must be an object")
        return [normalize_strategy(item, fill_defaults=True) for item in kept]

    def generate_strategies(
        self,
        priority_id: int,
        context: Optional[Dict[str, Any]] = None,
        count: int = 3,
        timeout: Optional[float] = None
    ) -> List[DraftStrategy]:
        """
        Draft `count` strategies for a priority and store them with status DRAFT.

        Raises:
            PlanningValidationError: count outside 1-5 or bad context
            RecordNotFoundError: unknown priority
            GenerationTimeoutError: generator exceeded the timeout
            GenerationFailedError: generator unavailable or output malformed
        """
        if isinstance(count, bool) or not isinstance(count, int) or not MIN_STRATEGIES <= count <= MAX_STRATEGIES:
            raise PlanningValidationError(f"count must be between {MIN_STRATEGIES} and {MAX_STRATEGIES}")

        priority = self.plans.get_priority(priority_id)
        generation_context = self._build_context(priority, context)
        timeout = DEFAULT_TIMEOUT_SECONDS if timeout is None else timeout

        logger.info(
            f"Generating {count} strategies for priority {priority_id} "
            f"with {self.generator.name} generator (timeout {timeout}s)"
        )
        raw = self._call_generator(generation_context, count, timeout)
        payloads = self.normalize_output(raw, count)

        drafts = self.plans.persist_generated_drafts(
            priority,
            context=generation_context,
            requested_count=count,
            generator_name=self.generator.name,
            model_version=self.generator.model_version,
            payloads=payloads,
        )
        logger.info(f"Stored {len(drafts)} draft strategies for priority {priority_id}")
        return drafts
