"""
SQLAlchemy table definitions
"""
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship

from ..clock import utcnow


Base = declarative_base()


class FlowRecord(Base):
    """Current state of a flow definition"""
    __tablename__ = 'flows'

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    trigger_event = Column(String(50), nullable=False)
    trigger_delay_days = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=False)
    apply_to_all = Column(Boolean, nullable=False, default=True)
    target_entity_ids = Column(JSON, default=list)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    versions = relationship("FlowVersionRecord", back_populates="flow", cascade="all, delete-orphan")
    steps = relationship("FlowStepRecord", back_populates="flow", cascade="all, delete-orphan")
    connections = relationship("FlowConnectionRecord", back_populates="flow", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("trigger_delay_days >= 0", name='check_flow_trigger_delay'),
        Index('idx_flows_trigger_active', 'trigger_event', 'is_active'),
    )


class FlowVersionRecord(Base):
    """Immutable graph snapshot that executions pin to"""
    __tablename__ = 'flow_versions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    flow_id = Column(String(36), ForeignKey('flows.id', ondelete='CASCADE'), nullable=False)
    version = Column(Integer, nullable=False)
    definition = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    flow = relationship("FlowRecord", back_populates="versions")

    __table_args__ = (
        UniqueConstraint('flow_id', 'version', name='unique_flow_version'),
    )


class FlowStepRecord(Base):
    """Queryable projection of the latest version's steps"""
    __tablename__ = 'flow_steps'

    id = Column(Integer, primary_key=True, autoincrement=True)
    flow_id = Column(String(36), ForeignKey('flows.id', ondelete='CASCADE'), nullable=False)
    step_key = Column(String(255), nullable=False)
    step_type = Column(String(50), nullable=False)
    label = Column(String(255))
    description = Column(Text)
    config = Column(JSON, default=dict)

    flow = relationship("FlowRecord", back_populates="steps")

    __table_args__ = (
        UniqueConstraint('flow_id', 'step_key', name='unique_flow_step'),
        Index('idx_flow_steps_flow_id', 'flow_id'),
    )


class FlowConnectionRecord(Base):
    """Queryable projection of the latest version's connections"""
    __tablename__ = 'flow_connections'

    id = Column(Integer, primary_key=True, autoincrement=True)
    flow_id = Column(String(36), ForeignKey('flows.id', ondelete='CASCADE'), nullable=False)
    edge_key = Column(String(255), nullable=False)
    source_step_key = Column(String(255), nullable=False)
    target_step_key = Column(String(255), nullable=False)
    edge_type = Column(String(50), nullable=False)
    label = Column(String(255))

    flow = relationship("FlowRecord", back_populates="connections")

    __table_args__ = (
        UniqueConstraint('flow_id', 'edge_key', name='unique_flow_connection'),
        CheckConstraint(
            "edge_type IN ('default', 'condition_yes', 'condition_no')",
            name='check_connection_edge_type'
        ),
        Index('idx_flow_connections_source', 'flow_id', 'source_step_key'),
    )


class FlowExecutionRecord(Base):
    """One execution of a flow against one entity"""
    __tablename__ = 'flow_executions'

    id = Column(String(36), primary_key=True)
    flow_id = Column(String(36), nullable=False)
    flow_version = Column(Integer, nullable=False)
    entity_id = Column(String(255), nullable=False)
    trigger_event = Column(String(50))
    status = Column(String(20), nullable=False)
    current_step_key = Column(String(255))
    next_execution_at = Column(DateTime)
    context = Column(JSON, default=dict)
    history = Column(JSON, default=list)
    failure_reason = Column(Text)
    dedupe_key = Column(String(600), unique=True)
    locked_by = Column(String(255))
    locked_until = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'completed', 'cancelled', 'failed')",
            name='check_flow_execution_status'
        ),
        Index('idx_flow_executions_flow_id', 'flow_id'),
        Index('idx_flow_executions_entity_id', 'entity_id'),
        Index('idx_flow_executions_due', 'status', 'next_execution_at'),
    )
