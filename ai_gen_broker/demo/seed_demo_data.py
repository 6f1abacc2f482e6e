# ai_gen_broker/demo/seed_demo_data.py

from typing import Dict

from ai_gen_broker.storage.repository import ProjectRepository, UserRepository, initialize_schema

DEMO_USER_ID = "demo-developer"
DEMO_PROJECT_ID = "demo-project"

DEMO_FILES = {
    "src/App.jsx": """import React from 'react';
import TodoList from './TodoList';

export default function App() {
  return <TodoList />;
}
""",
    "src/TodoList.jsx": """import React, { useState } from 'react';

export default function TodoList() {
  const [items, setItems] = useState([]);
  return (
    <ul>
      {items.map((item) => <li key={item.id}>{item.title}</li>)}
    </ul>
  );
}
""",
}


def seed_demo_data(db_path: str) -> Dict[str, str]:
    """Create a demo developer and a public demo project with two files.

    Safe to call twice: existing demo rows are left alone.

    Returns:
        {"user_id": ..., "project_id": ...}
    """
    initialize_schema(db_path)

    users = UserRepository(db_path)
    if users.get_user(DEMO_USER_ID) is None:
        users.create_user(DEMO_USER_ID, "developer")

    projects = ProjectRepository(db_path)
    if projects.get_project(DEMO_PROJECT_ID) is None:
        projects.create_project(
            owner_id=DEMO_USER_ID,
            name="Demo Todo App",
            description="Small React project used as prompt context",
            language="javascript",
            is_public=True,
            project_id=DEMO_PROJECT_ID,
        )
        for filename, content in DEMO_FILES.items():
            projects.add_file(DEMO_PROJECT_ID, filename, content)

    return {"user_id": DEMO_USER_ID, "project_id": DEMO_PROJECT_ID}


if __name__ == "__main__":
    seeded = seed_demo_data("ai_gen_broker.db")
    print(f"Demo data ready: user {seeded['user_id']}, project {seeded['project_id']}")
