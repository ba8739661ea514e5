"""Data models for resource-to-demand allocation."""

from pydantic import BaseModel, Field

from .problem import new_id


class AllocationResource(BaseModel):
    """A supplier of capacity at a unit cost."""

    resource_id: str = Field(default_factory=new_id)
    name: str = ""
    capacity: float = Field(ge=0.0, description="Units this resource can supply")
    unit_cost: float = Field(0.0, description="Cost per allocated unit")
    skills: list[str] = Field(default_factory=list)


class AllocationDemand(BaseModel):
    """A quantity that must be covered by resources."""

    demand_id: str = Field(default_factory=new_id)
    name: str = ""
    quantity: float = Field(ge=0.0, description="Units required")
    required_skills: list[str] = Field(
        default_factory=list, description="Skills a resource needs to serve this demand"
    )
    priority: int = 0

    def accepts(self, resource: AllocationResource) -> bool:
        """Check if the resource has every required skill."""
        return set(self.required_skills).issubset(resource.skills)
