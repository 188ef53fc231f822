"""Service delivery practices: monitoring and deployment automation."""

from __future__ import annotations

from cloudward.frameworks.catalog import register_catalog_framework
from cloudward.frameworks.schema import (
    Framework,
    FrameworkType,
    Pillar,
    Rule,
    RuleImplementation,
    RuleImplementationKind,
    Severity,
)

FRAMEWORK_ID = "cloud-service-delivery"

SERVICE_DELIVERY = Framework(
    id=FRAMEWORK_ID,
    type=FrameworkType.SERVICE_DELIVERY,
    name="Cloud Service Delivery Practices",
    description="Best practices for service delivery and operational excellence.",
    version="1.0",
    categories=["Service Delivery", "Operations", "Monitoring", "Automation"],
    metadata={"source": "builtin", "focus": "service_delivery"},
)

SERVICE_DELIVERY_RULES: list[Rule] = [
    Rule(
        id="sdp-mon-01",
        framework_id=FRAMEWORK_ID,
        rule_id="MON.01",
        name="Application monitoring and observability",
        description="Applications should have comprehensive monitoring and logging configured",
        severity=Severity.MEDIUM,
        pillar=Pillar.OPERATIONAL_EXCELLENCE,
        category="Monitoring",
        tags=["monitoring", "logging", "observability"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.AI_INFERENCE,
            language="natural",
        ),
        conditions={
            "resourceTypes": ["AWS::Lambda::Function", "AWS::ECS::Service", "AWS::EC2::Instance"],
            "checkpoints": [
                "Detailed monitoring should be enabled",
                "Application logs should be centralized",
                "Custom metrics should be defined",
                "Alarms should be configured for critical metrics",
            ],
        },
        remediation=(
            "Enable detailed monitoring, centralize application logs, create custom "
            "metrics for business KPIs, and set alarms on critical thresholds."
        ),
    ),
    Rule(
        id="sdp-deploy-01",
        framework_id=FRAMEWORK_ID,
        rule_id="DEPLOY.01",
        name="Automated deployment pipeline",
        description="Applications should use automated CI/CD pipelines for deployment",
        severity=Severity.MEDIUM,
        pillar=Pillar.OPERATIONAL_EXCELLENCE,
        category="Deployment",
        tags=["cicd", "automation", "deployment"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.AI_INFERENCE,
            language="natural",
        ),
        conditions={
            "resourceTypes": [
                "AWS::CodePipeline::Pipeline",
                "AWS::CodeBuild::Project",
                "AWS::CodeDeploy::Application",
            ],
            "checkpoints": [
                "A CI/CD pipeline should be implemented",
                "Automated testing should be included",
                "Blue/green or rolling deployments should be used",
                "Rollback capabilities should be available",
            ],
        },
        remediation=(
            "Implement an automated deployment pipeline with testing stages, use "
            "blue/green or rolling deployment strategies, and ensure rollback "
            "capabilities."
        ),
    ),
]

# Register on import
register_catalog_framework(SERVICE_DELIVERY, SERVICE_DELIVERY_RULES)
