"""Pipeline state management for resume functionality"""
import json
import os
import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Any

logger = logging.getLogger(__name__)

STATE_FILE_NAME = ".pipeline_state.json"


class PipelineState:
    """Tracks which analysis steps have completed, failed, or written outputs"""
    
    STEPS = ['summarize', 'group_model', 'cross_model']
    
    def __init__(self, output_dir: str):
        self.output_dir = output_dir
        self.state_file = os.path.join(output_dir, STATE_FILE_NAME)
        self.state = self._load_or_create()
    
    def _load_or_create(self) -> Dict[str, Any]:
        """Load existing state or create new one"""
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r') as f:
                    state = json.load(f)
                if set(state.get('steps', {})) == set(self.STEPS):
                    return state
                logger.warning("State file lists different steps. Creating new state.")
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not load state file: {e}. Creating new state.")
        
        return self._create_new_state()
    
    @staticmethod
    def _new_step() -> Dict[str, Any]:
        return {
            'status': 'pending',  # pending, in_progress, completed, failed
            'started_at': None,
            'completed_at': None,
            'outputs': [],
            'error': None
        }
    
    def _create_new_state(self) -> Dict[str, Any]:
        """Create a fresh state"""
        return {
            'version': '1.0',
            'created_at': datetime.now().isoformat(),
            'updated_at': datetime.now().isoformat(),
            'current_step': None,
            'completed_steps': [],
            'steps': {step: self._new_step() for step in self.STEPS}
        }
    
    def save(self):
        """Save current state to file"""
        Path(self.output_dir).mkdir(parents=True, exist_ok=True)
        self.state['updated_at'] = datetime.now().isoformat()
        with open(self.state_file, 'w') as f:
            json.dump(self.state, f, indent=2)
    
    def start_step(self, step: str):
        """Mark a step as started"""
        self.state['current_step'] = step
        self.state['steps'][step]['status'] = 'in_progress'
        self.state['steps'][step]['started_at'] = datetime.now().isoformat()
        self.state['steps'][step]['outputs'] = []
        self.state['steps'][step]['error'] = None
        self.save()
        logger.info(f"Started step: {step}")
    
    def complete_step(self, step: str, outputs: List[str] = None):
        """Mark a step as completed, recording the artifacts it wrote"""
        self.state['steps'][step]['status'] = 'completed'
        self.state['steps'][step]['completed_at'] = datetime.now().isoformat()
        self.state['steps'][step]['outputs'] = list(outputs or [])
        if step not in self.state['completed_steps']:
            self.state['completed_steps'].append(step)
        self.state['current_step'] = None
        self.save()
        logger.info(f"Completed step: {step}")
    
    def fail_step(self, step: str, error: str):
        """Mark a step as failed"""
        self.state['steps'][step]['status'] = 'failed'
        self.state['steps'][step]['error'] = error
        self.state['current_step'] = None
        if step in self.state['completed_steps']:
            self.state['completed_steps'].remove(step)
        self.save()
        logger.error(f"Step {step} failed: {error}")
    
    def is_step_completed(self, step: str) -> bool:
        """Check if a step is completed"""
        return self.state['steps'][step]['status'] == 'completed'
    
    def get_resume_steps(self, requested_steps: List[str]) -> List[str]:
        """Get steps that need to be run when resuming
        
        Returns only steps that are not completed
        """
        return [step for step in requested_steps if not self.is_step_completed(step)]
    
    def get_progress_summary(self) -> str:
        """Get a summary of pipeline progress"""
        lines = ["Pipeline State Summary:"]
        lines.append("-" * 40)
        
        for step in self.STEPS:
            step_state = self.state['steps'][step]
            status = step_state['status']
            
            if status == 'completed':
                lines.append(f"  {step}: COMPLETED ({len(step_state['outputs'])} outputs)")
            elif status == 'in_progress':
                lines.append(f"  {step}: IN PROGRESS")
            elif status == 'failed':
                lines.append(f"  {step}: FAILED - {step_state['error']}")
            else:
                lines.append(f"  {step}: pending")
        
        lines.append("-" * 40)
        return "\n".join(lines)
    
    def reset(self):
        """Reset state to start fresh"""
        self.state = self._create_new_state()
        self.save()
        logger.info("Pipeline state reset")


def get_state(output_dir: str) -> PipelineState:
    """Get or create pipeline state for an output directory"""
    return PipelineState(output_dir)
